"""Per-record JSON artifacts on the local file system."""

import asyncio
import re
from pathlib import Path
from typing import Any

from ..capture import shard_turns
from ..config import HarvestSettings
from ..exceptions import SinkFailure, StorageWriteException
from ..logging import get_logger
from ..model import Record
from ..persistence import JsonSerializer

logger = get_logger(__name__)

SHARD_SCHEMA = "chatharvest.shard.v1"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(value: str, max_len: int = 80) -> str:
    """File-name-safe form of an identifier."""
    cleaned = _UNSAFE.sub("_", value).strip("._")
    return (cleaned or "item")[:max_len]


def shard_filename(run_id: str, item_id: str, index: int, count: int) -> str:
    """Deterministic name ``<run_id>__<item_id>__NNN-of-NNN.json`` (1-based)."""
    return f"{safe_name(run_id)}__{safe_name(item_id)}__{index:03d}-of-{count:03d}.json"


class JsonFileSink:
    """Writes each record as one or more sharded JSON files.

    Rewriting a record replaces its earlier shard files, so re-capture never
    leaves stale shards behind.
    """

    def __init__(
        self,
        output_path: Path,
        run_id: str | None = None,
        max_chars: int = 140000,
        overlap_turns: int = 2,
        throttle_ms: int = 0,
        serializer: JsonSerializer | None = None,
    ) -> None:
        self.output_path = Path(output_path)
        self.run_id = run_id
        self.max_chars = max_chars
        self.overlap_turns = overlap_turns
        self.throttle_ms = throttle_ms
        self.serializer = serializer or JsonSerializer()

    @classmethod
    def from_settings(cls, settings: HarvestSettings, run_id: str | None = None) -> "JsonFileSink":
        return cls(
            output_path=settings.output_path,
            run_id=run_id,
            max_chars=settings.shard_max_chars,
            overlap_turns=settings.shard_overlap_turns,
            throttle_ms=settings.sink_throttle_ms,
        )

    def bind(self, run_id: str) -> None:
        self.run_id = run_id

    def _payloads(self, record: Record) -> list[tuple[str, dict[str, Any]]]:
        run_id = self.run_id or "run"
        shards = shard_turns(record.turns, self.max_chars, self.overlap_turns) or [[]]
        count = len(shards)
        base = {
            "schema": SHARD_SCHEMA,
            "run_id": run_id,
            "item_id": record.item_id,
            "url": record.url,
            "label": record.label,
            "status": record.status.value,
            "captured_at": record.captured_at.isoformat(),
            "shard_count": count,
        }
        payloads = []
        for i, turns in enumerate(shards, start=1):
            payload = {
                **base,
                "shard_index": i,
                "turns": [turn.model_dump(mode="json") for turn in turns],
            }
            if i == 1:
                payload["evidence"] = record.evidence
            payloads.append((shard_filename(run_id, record.item_id, i, count), payload))
        return payloads

    def _write_all(self, record: Record) -> list[str]:
        self.output_path.mkdir(parents=True, exist_ok=True)
        payloads = self._payloads(record)
        names = [name for name, _ in payloads]

        prefix = f"{safe_name(self.run_id or 'run')}__{safe_name(record.item_id)}__"
        for stale in self.output_path.glob(f"{prefix}*-of-*.json"):
            if stale.name not in names:
                stale.unlink()

        for name, payload in payloads:
            self.serializer.serialize(payload, self.output_path / name)
        return names

    async def write(self, record: Record) -> list[str]:
        """Write the shards of ``record``.

        Returns:
            Names of the files written

        Raises:
            SinkFailure: If any file could not be written
        """
        try:
            names = await asyncio.to_thread(self._write_all, record)
        except (StorageWriteException, OSError) as e:
            raise SinkFailure(record.item_id, str(e), output_path=str(self.output_path)) from e

        logger.debug("record_written", item_id=record.item_id, files=len(names))

        if self.throttle_ms:
            await asyncio.sleep(self.throttle_ms / 1000)
        return names
