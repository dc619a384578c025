"""Content stabilization gate.

Decides when a dynamically-rendered view is ready to be read. Readiness takes
two things: the view has stopped changing (quiescence), and the field being
read returns the same non-empty value on two consecutive polls. A value that
never stabilizes is reported as a failure, never as an empty success.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import HarvestSettings
from ..exceptions import HarvestException
from ..interfaces import ChangeFeed, SnapshotSource
from ..logging import get_logger

logger = get_logger(__name__)

NEVER_STABILIZED = "never_stabilized_nonempty"


@dataclass
class GateConfig:
    """Timing parameters of the gate, in milliseconds."""

    quiet_ms: int = 850
    quiescence_timeout_ms: int = 10000
    quiescence_poll_ms: int = 100
    max_attempts: int = 16
    poll_ms: int = 350

    @classmethod
    def from_settings(cls, settings: HarvestSettings) -> "GateConfig":
        return cls(
            quiet_ms=settings.quiet_ms,
            quiescence_timeout_ms=settings.quiescence_timeout_ms,
            quiescence_poll_ms=settings.quiescence_poll_ms,
            max_attempts=settings.stable_text_max_attempts,
            poll_ms=settings.stable_text_poll_ms,
        )


@dataclass
class QuiescenceResult:
    """Result of waiting for the view to stop changing."""

    quiet: bool
    wait_time_ms: float
    change_count: int
    method: str = "feed"


@dataclass
class StableValueResult:
    """Result of value stabilization."""

    ok: bool
    text: str
    attempts: int
    note: str | None = None


@dataclass
class GateResult:
    """Composition of quiescence and value stabilization."""

    ready: bool
    quiescence: QuiescenceResult
    value: StableValueResult
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def note(self) -> str | None:
        return self.value.note

    def metrics(self) -> dict[str, Any]:
        """Gate metrics for record evidence."""
        return {
            "ready": self.ready,
            "quiet": self.quiescence.quiet,
            "quiescence_ms": round(self.quiescence.wait_time_ms, 1),
            "change_count": self.quiescence.change_count,
            "quiescence_method": self.quiescence.method,
            "value_attempts": self.value.attempts,
            "note": self.value.note,
        }


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class ContentStabilizationGate:
    """Waits for a view to be readable.

    Example:
        >>> gate = ContentStabilizationGate(GateConfig(quiet_ms=500))
        >>> result = await gate.await_ready(feed, extractor.last_message_text)
        >>> if result.ready:
        ...     print(result.value.text)
    """

    def __init__(self, config: GateConfig | None = None) -> None:
        self.config = config or GateConfig()

    async def wait_for_quiescence(self, feed: ChangeFeed) -> QuiescenceResult:
        """Wait until no change has been observed for ``quiet_ms``.

        Args:
            feed: Change feed on the relevant subtree

        Returns:
            QuiescenceResult; ``quiet`` is False when the timeout was reached
        """
        start = time.monotonic()

        try:
            await feed.subscribe()
        except HarvestException as e:
            logger.warning("change_feed_subscribe_failed", error=str(e))
            if isinstance(feed, SnapshotSource):
                return await self._wait_with_snapshots(feed)
            return QuiescenceResult(
                quiet=False, wait_time_ms=_elapsed_ms(start), change_count=0, method="none"
            )

        change_count = 0
        last_change = start
        quiet = False
        try:
            while True:
                changes = await feed.drain()
                now = time.monotonic()
                if changes:
                    change_count += changes
                    last_change = now

                if (now - last_change) * 1000 >= self.config.quiet_ms:
                    quiet = True
                    break

                if _elapsed_ms(start) >= self.config.quiescence_timeout_ms:
                    logger.debug(
                        "quiescence_timeout",
                        timeout_ms=self.config.quiescence_timeout_ms,
                        changes=change_count,
                    )
                    break

                await asyncio.sleep(self.config.quiescence_poll_ms / 1000)
        finally:
            try:
                await feed.unsubscribe()
            except HarvestException as e:
                logger.warning("change_feed_unsubscribe_failed", error=str(e))

        return QuiescenceResult(
            quiet=quiet, wait_time_ms=_elapsed_ms(start), change_count=change_count
        )

    async def _wait_with_snapshots(self, source: SnapshotSource) -> QuiescenceResult:
        """Fallback: compare successive snapshots of the subtree."""
        start = time.monotonic()
        last_snapshot = await source.snapshot()
        last_change = start
        change_count = 0

        while True:
            if _elapsed_ms(start) >= self.config.quiescence_timeout_ms:
                return QuiescenceResult(
                    quiet=False,
                    wait_time_ms=_elapsed_ms(start),
                    change_count=change_count,
                    method="snapshot",
                )

            await asyncio.sleep(self.config.quiescence_poll_ms / 1000)

            snapshot = await source.snapshot()
            now = time.monotonic()
            if snapshot != last_snapshot:
                change_count += 1
                last_change = now
                last_snapshot = snapshot
            elif (now - last_change) * 1000 >= self.config.quiet_ms:
                return QuiescenceResult(
                    quiet=True,
                    wait_time_ms=_elapsed_ms(start),
                    change_count=change_count,
                    method="snapshot",
                )

    async def stabilize_value(self, read: Callable[[], Awaitable[str]]) -> StableValueResult:
        """Poll ``read`` until it returns the same non-empty value twice in a row.

        Empty or whitespace-only reads reset the comparison. Exhausting
        ``max_attempts`` yields ``ok=False`` with note ``never_stabilized_nonempty``.
        """
        previous: str | None = None

        for attempt in range(1, self.config.max_attempts + 1):
            text = ((await read()) or "").strip()

            if not text:
                previous = None
            elif text == previous:
                return StableValueResult(ok=True, text=text, attempts=attempt)
            else:
                previous = text

            if attempt < self.config.max_attempts:
                await asyncio.sleep(self.config.poll_ms / 1000)

        logger.debug("value_never_stabilized", attempts=self.config.max_attempts)
        return StableValueResult(
            ok=False, text="", attempts=self.config.max_attempts, note=NEVER_STABILIZED
        )

    async def wait_until(
        self,
        predicate: Callable[[], Awaitable[bool]],
        budget_ms: int,
        poll_ms: int,
    ) -> bool:
        """Poll ``predicate`` until it holds or ``budget_ms`` is spent.

        The predicate is always evaluated at least once.
        """
        start = time.monotonic()
        while True:
            if await predicate():
                return True
            remaining = budget_ms - _elapsed_ms(start)
            if remaining <= 0:
                return False
            await asyncio.sleep(min(poll_ms, remaining) / 1000)

    async def await_ready(
        self,
        feed: ChangeFeed | None,
        read: Callable[[], Awaitable[str]],
    ) -> GateResult:
        """Quiescence, then value stabilization. Ready iff the value stabilized."""
        if feed is not None:
            quiescence = await self.wait_for_quiescence(feed)
        else:
            quiescence = QuiescenceResult(quiet=True, wait_time_ms=0.0, change_count=0, method="none")

        value = await self.stabilize_value(read)
        result = GateResult(ready=value.ok, quiescence=quiescence, value=value)

        logger.debug(
            "gate_evaluated",
            ready=result.ready,
            quiet=quiescence.quiet,
            changes=quiescence.change_count,
            attempts=value.attempts,
        )
        return result
