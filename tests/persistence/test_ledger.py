"""Tests for the append-only ledger."""

import pytest

from chatharvest.exceptions import StorageReadException
from chatharvest.model import LedgerEventType
from chatharvest.persistence import Ledger


class TestLedger:
    """Tests for Ledger over both backends."""

    def test_append_uses_bound_run(self) -> None:
        ledger = Ledger(run_id="run_a")

        event = ledger.append(LedgerEventType.RUN_START, {"anchor": "x"})

        assert event.run_id == "run_a"
        assert event.payload == {"anchor": "x"}
        assert len(ledger) == 1

    def test_filters(self) -> None:
        ledger = Ledger(run_id="run_a")
        ledger.append(LedgerEventType.RUN_START)
        ledger.append(LedgerEventType.NAVIGATE, {"cursor": 0})
        ledger.bind("run_b")
        ledger.append(LedgerEventType.RUN_START)
        ledger.append("NAVIGATE", {"cursor": 0}, run_id="run_a")

        assert len(ledger.events(run_id="run_a")) == 3
        assert len(ledger.events(event_type=LedgerEventType.RUN_START)) == 2
        assert [e.run_id for e in ledger.events(run_id="run_a", event_type="NAVIGATE")] == ["run_a", "run_a"]
        assert ledger.last(run_id="run_b").type is LedgerEventType.RUN_START

    def test_unknown_event_type(self) -> None:
        with pytest.raises(ValueError):
            Ledger().append("NOT_AN_EVENT")

    def test_jsonl_survives_reopen(self, tmp_path) -> None:
        path = tmp_path / "data" / "ledger.jsonl"
        ledger = Ledger.jsonl(path, run_id="run_a")
        ledger.append(LedgerEventType.RUN_START)
        ledger.append(LedgerEventType.CHAT_COMPLETE, {"item_id": "c1", "status": "OK"})

        reopened = Ledger.jsonl(path)
        events = reopened.events()

        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
        assert [e.type for e in events] == [LedgerEventType.RUN_START, LedgerEventType.CHAT_COMPLETE]
        assert events[1].payload["item_id"] == "c1"

    def test_jsonl_missing_file(self, tmp_path) -> None:
        assert Ledger.jsonl(tmp_path / "ledger.jsonl").events() == []

    def test_jsonl_corrupt_line(self, tmp_path) -> None:
        path = tmp_path / "ledger.jsonl"
        ledger = Ledger.jsonl(path, run_id="run_a")
        ledger.append(LedgerEventType.RUN_START)
        with open(path, "a", encoding="utf-8") as f:
            f.write("{broken\n")

        with pytest.raises(StorageReadException):
            ledger.events()
