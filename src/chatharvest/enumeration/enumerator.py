"""Stability-gated enumeration of virtualized lists.

A virtualized list only materializes the rows near the viewport, so no single
scan sees every item. The enumerator sweeps the container, merging each scan
into an accumulator, and only accepts the result once the accumulated count
has stopped growing for ``stable_rounds`` consecutive rounds. Results that are
suspiciously small fail closed: an incomplete list is never passed on.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..config import HarvestSettings
from ..interfaces import ContainerLocator, ItemIdentifierExtractor, ScrollContainer
from ..logging import get_logger
from ..model import ItemRef

logger = get_logger(__name__)

NO_CONTAINER_FOUND = "NO_CONTAINER_FOUND"
STOPPED = "STOPPED"

ProgressObserver = Callable[[int, int, int], None]
StopCheck = Callable[[], Awaitable[bool]]


def low_count_reason(count: int) -> str:
    return f"LOW_COUNT_{count}"


@dataclass
class EnumeratorConfig:
    """Enumeration parameters."""

    max_rounds: int = 2200
    scroll_step_px: int = 900
    settle_ms: int = 260
    stable_rounds: int = 12
    low_count_threshold: int = 3
    locator_attempts: int = 3
    progress_every: int = 10

    @classmethod
    def from_settings(cls, settings: HarvestSettings) -> "EnumeratorConfig":
        return cls(
            max_rounds=settings.discovery_max_rounds,
            scroll_step_px=settings.discovery_scroll_step_px,
            settle_ms=settings.discovery_settle_ms,
            stable_rounds=settings.discovery_stable_rounds,
            low_count_threshold=settings.discovery_low_count,
            locator_attempts=settings.discovery_locator_attempts,
            progress_every=settings.discovery_progress_every,
        )


@dataclass
class EnumerationResult:
    """Outcome of an enumeration.

    ``items`` is only populated when ``ok`` is True. ``rounds`` is the index of
    the last round executed.
    """

    ok: bool
    items: list[ItemRef] = field(default_factory=list)
    reason: str | None = None
    rounds: int = 0
    stable_rounds: int = 0
    container_found: bool = True
    scrollable: bool = True
    capped: bool = False

    @property
    def count(self) -> int:
        return len(self.items)


class StabilityGatedEnumerator:
    """Enumerates every item a scrollable container can present, or fails closed."""

    def __init__(
        self,
        locator: ContainerLocator,
        extractor: ItemIdentifierExtractor,
        config: EnumeratorConfig | None = None,
    ) -> None:
        self.locator = locator
        self.extractor = extractor
        self.config = config or EnumeratorConfig()

    async def _settle(self) -> None:
        await asyncio.sleep(self.config.settle_ms / 1000)

    async def _locate(self) -> ScrollContainer | None:
        for attempt in range(1, self.config.locator_attempts + 1):
            container = await self.locator.locate()
            if container is not None:
                return container
            logger.debug("container_not_found", attempt=attempt)
            if attempt < self.config.locator_attempts:
                await self._settle()
        return None

    async def enumerate(
        self,
        should_stop: StopCheck | None = None,
        on_progress: ProgressObserver | None = None,
    ) -> EnumerationResult:
        """Sweep the container until the item count is proven stable.

        Args:
            should_stop: Checked at the top of every round; True aborts with STOPPED
            on_progress: Called with (round, count, stable) every ``progress_every`` rounds

        Returns:
            EnumerationResult
        """
        cfg = self.config

        container = await self._locate()
        if container is None:
            logger.warning("enumeration_failed", reason=NO_CONTAINER_FOUND)
            return EnumerationResult(ok=False, reason=NO_CONTAINER_FOUND, container_found=False)

        accumulated: dict[str, ItemRef] = {}
        last_count = 0
        stable = 0
        scrollable = True
        round_index = 0
        capped = True

        for round_index in range(cfg.max_rounds):
            if should_stop is not None and await should_stop():
                logger.info("enumeration_stopped", round=round_index, count=len(accumulated))
                return EnumerationResult(
                    ok=False, reason=STOPPED, rounds=round_index, stable_rounds=stable
                )

            for item in await self.extractor.visible_items(container):
                accumulated.setdefault(item.item_id, item)

            count = len(accumulated)
            if count > last_count:
                last_count = count
                stable = 0
            else:
                stable += 1

            if on_progress is not None and round_index % cfg.progress_every == 0:
                on_progress(round_index, count, stable)

            if round_index == 0:
                scrollable = await container.is_scrollable()
                if not scrollable:
                    logger.debug("container_not_scrollable", count=count)
                    capped = False
                    break

            if stable >= cfg.stable_rounds:
                capped = False
                break

            await container.scroll_by(cfg.scroll_step_px)
            await self._settle()

        if capped:
            logger.warning("enumeration_round_cap_reached", max_rounds=cfg.max_rounds)

        count = len(accumulated)
        if count <= cfg.low_count_threshold:
            reason = low_count_reason(count)
            logger.warning("enumeration_failed", reason=reason, rounds=round_index)
            return EnumerationResult(
                ok=False,
                reason=reason,
                rounds=round_index,
                stable_rounds=stable,
                scrollable=scrollable,
                capped=capped,
            )

        logger.info("enumeration_complete", count=count, rounds=round_index, stable=stable)
        return EnumerationResult(
            ok=True,
            items=list(accumulated.values()),
            rounds=round_index,
            stable_rounds=stable,
            scrollable=scrollable,
            capped=capped,
        )
