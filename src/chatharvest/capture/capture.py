"""Capture of one item view into a Record."""

import asyncio
from dataclasses import dataclass
from typing import Any

from ..config import HarvestSettings
from ..exceptions import CaptureFailure
from ..interfaces import FieldExtractor, HistoryLoader
from ..logging import get_logger
from ..model import ItemRef, Record, RecordStatus, Turn
from ..stabilization import GateResult

logger = get_logger(__name__)


@dataclass
class HydrationConfig:
    """Bounds of the history-loading loop run before extraction."""

    passes: int = 40
    pause_ms: int = 500
    min_nodes: int = 2

    @classmethod
    def from_settings(cls, settings: HarvestSettings) -> "HydrationConfig":
        return cls(
            passes=settings.hydrate_passes,
            pause_ms=settings.hydrate_pause_ms,
            min_nodes=settings.hydrate_min_nodes,
        )


def dedup_turns(turns: list[Turn]) -> list[Turn]:
    """Drop blank turns and exact (role, text) repeats, keeping first occurrences.

    Surviving turns are re-indexed from zero in their original order.
    """
    seen: set[tuple[str, str]] = set()
    kept: list[Turn] = []
    for turn in turns:
        text = turn.text.strip()
        if not text:
            continue
        key = (turn.role.value, text)
        if key in seen:
            continue
        seen.add(key)
        kept.append(Turn(index=len(kept), role=turn.role, text=text))
    return kept


def classify(turns: list[Turn], gate_ready: bool, busy_timeout: bool) -> RecordStatus:
    if busy_timeout or not gate_ready:
        return RecordStatus.TIMEOUT
    if turns:
        return RecordStatus.OK
    return RecordStatus.EMPTY


class Capture:
    """Reads turns from the current view and builds an immutable Record."""

    def __init__(
        self,
        extractor: FieldExtractor,
        min_turns_warn: int = 2,
        hydration: HydrationConfig | None = None,
    ) -> None:
        self.extractor = extractor
        self.min_turns_warn = min_turns_warn
        self.hydration = hydration or HydrationConfig()

    async def hydrate(self) -> dict[str, Any] | None:
        """Scroll the item view to its top until its history stops growing.

        Returns None when the extractor cannot load history. Loaded means at
        least ``min_nodes`` turn nodes and no growth over the last pass.
        """
        if not isinstance(self.extractor, HistoryLoader) or self.hydration.passes == 0:
            return None

        nodes = await self.extractor.count_turn_nodes()
        passes = 0
        complete = False
        while passes < self.hydration.passes:
            await self.extractor.scroll_to_top()
            passes += 1
            await asyncio.sleep(self.hydration.pause_ms / 1000)
            previous, nodes = nodes, await self.extractor.count_turn_nodes()
            if nodes >= self.hydration.min_nodes and nodes == previous:
                complete = True
                break

        if not complete:
            logger.warning("history_not_fully_loaded", passes=passes, nodes=nodes)
        return {"passes": passes, "nodes": nodes, "complete": complete}

    async def capture(
        self,
        item: ItemRef,
        gate_result: GateResult | None,
        *,
        busy_timeout: bool = False,
    ) -> Record:
        """Capture ``item`` from the current view.

        Args:
            item: Item whose view is current
            gate_result: Result of the stabilization gate, None if it was not run
            busy_timeout: The view never stopped reporting busy

        Returns:
            Record with status TIMEOUT, OK or EMPTY
        """
        evidence: dict[str, Any] = {"busy_timeout": busy_timeout}
        if gate_result is not None:
            evidence["gate"] = gate_result.metrics()
        gate_ready = gate_result.ready if gate_result is not None else not busy_timeout

        try:
            hydration = await self.hydrate()
        except CaptureFailure as e:
            logger.warning("history_load_failed", item_id=item.item_id, error=str(e))
            hydration = {"complete": False, "error": e.message}
        if hydration is not None:
            evidence["hydration"] = hydration

        raw: list[Turn] = []
        try:
            extraction = await self.extractor.extract_turns()
            raw = list(extraction.turns)
            evidence["strategy"] = extraction.strategy
        except CaptureFailure as e:
            logger.warning("extraction_failed", item_id=item.item_id, error=str(e))
            evidence["strategy"] = None
            evidence["error"] = e.message

        turns = dedup_turns(raw)
        evidence["raw_turns"] = len(raw)
        evidence["deduped_turns"] = len(turns)
        if turns and len(turns) < self.min_turns_warn:
            evidence["low_turns"] = True

        status = classify(turns, gate_ready, busy_timeout)
        record = Record(
            item_id=item.item_id,
            url=item.url,
            label=item.label,
            turns=tuple(turns),
            status=status,
            evidence=evidence,
        )

        logger.info(
            "item_captured",
            item_id=item.item_id,
            status=status.value,
            turns=record.turn_count,
            strategy=evidence.get("strategy"),
        )
        return record
