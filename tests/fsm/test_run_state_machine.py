"""Tests for the run state machine over an in-memory site."""

import pytest

from chatharvest.capture import verify_report
from chatharvest.enumeration import STOPPED
from chatharvest.exceptions import ErrorKind, StateTransitionException
from chatharvest.fsm import ANCHOR_UNREACHABLE, INVALID_RUN_STATE, QUEUE_MISSING, Trigger
from chatharvest.model import LedgerEventType, Phase, RecordStatus, RunState
from chatharvest.persistence import RecordIndex, RunStore


def _types(ledger, event_type: LedgerEventType) -> list:
    return ledger.events(event_type=event_type)


class StoppingExtractor:
    """Requests a stop from inside enumeration, once."""

    def __init__(self, inner, machine, on_call: int = 2) -> None:
        self.inner = inner
        self.machine = machine
        self.on_call = on_call
        self.calls = 0

    async def visible_items(self, container):
        self.calls += 1
        if self.calls == self.on_call:
            self.machine.request_stop()
        return await self.inner.visible_items(container)


class TestFullRun:
    """End-to-end runs from DISCOVER to DONE."""

    @pytest.mark.asyncio
    async def test_every_item_captured_in_order(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)

        first = await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert first.navigated and first.phase_after is Phase.DISCOVER
        assert state.phase is Phase.DONE
        assert state.cursor == 5
        assert state.finished_at is not None
        assert [r.item_id for r in state.captured] == [f"conv-{i:03d}" for i in range(5)]
        assert all(r.status is RecordStatus.OK for r in state.captured)
        assert state.failures == []

        completed = _types(ledger, LedgerEventType.CHAT_COMPLETE)
        assert [e.payload["cursor"] for e in completed] == [0, 1, 2, 3, 4]
        assert len(_types(ledger, LedgerEventType.RUN_COMPLETE)) == 1
        assert len(RecordIndex(kv)) == 5

    @pytest.mark.asyncio
    async def test_returns_to_anchor_between_items(self, make_machine, run_to_end) -> None:
        machine, site = make_machine(count=4)

        await machine.start(site.anchor)
        await run_to_end(machine)

        urls = [item.url for item in site.items.values()]
        assert site.navigations == [
            site.anchor,
            urls[0],
            site.anchor,
            urls[1],
            site.anchor,
            urls[2],
            site.anchor,
            urls[3],
            site.anchor,
        ]

    @pytest.mark.asyncio
    async def test_start_ledgers_first_transition(self, make_machine, ledger) -> None:
        machine, site = make_machine(count=4)

        await machine.start(site.anchor)

        first = _types(ledger, LedgerEventType.PHASE_TRANSITION)[0]
        assert first.payload == {"from": "IDLE", "to": "DISCOVER", "cursor": 0}

    @pytest.mark.asyncio
    async def test_direct_navigation(self, make_machine, run_to_end, kv) -> None:
        machine, site = make_machine(count=4, return_to_anchor=False)

        await machine.start(site.anchor)
        results = await run_to_end(machine)

        assert site.navigations == [site.anchor] + [item.url for item in site.items.values()]
        assert results[-1].reason == Phase.DONE.value
        assert RunStore(kv).load().phase is Phase.DONE

    @pytest.mark.asyncio
    async def test_terminal_run_ignores_ticks(self, make_machine, run_to_end) -> None:
        machine, site = make_machine(count=4)
        await machine.start(site.anchor)
        await run_to_end(machine)
        navigations = len(site.navigations)

        result = await machine.tick(Trigger.ROUTE_CHANGE)

        assert not result.ran
        assert result.reason == "DONE"
        assert len(site.navigations) == navigations

    @pytest.mark.asyncio
    async def test_no_run(self, make_machine) -> None:
        machine, _ = make_machine()

        result = await machine.tick()

        assert not result.ran
        assert result.reason == "NO_RUN"

    @pytest.mark.asyncio
    async def test_sink_receives_every_record(self, make_machine, make_sink, run_to_end, kv, ledger) -> None:
        sink = make_sink()
        machine, site = make_machine(count=4, sink=sink)

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert sink.run_id == state.run_id
        assert len(sink.records) == 4
        assert len(_types(ledger, LedgerEventType.SHARD_EXPORTED)) == 4
        entry = RecordIndex(kv).get("conv-000")
        assert entry.artifacts == [f"{state.run_id}__conv-000__001-of-001.json"]


class TestItemFailures:
    """Item-level failures never halt the run."""

    @pytest.mark.asyncio
    async def test_busy_item_times_out(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=10)
        site.busy.add("conv-004")

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.DONE
        assert state.cursor == 10
        assert state.status_counts() == {"OK": 9, "EMPTY": 0, "TIMEOUT": 1}
        assert state.record_for("conv-004").status is RecordStatus.TIMEOUT
        assert state.record_for("conv-004").evidence["busy_timeout"] is True
        skipped = _types(ledger, LedgerEventType.SKIP_BUSY)
        assert [e.payload["item_id"] for e in skipped] == ["conv-004"]
        assert skipped[0].payload["kind"] == ErrorKind.BUSY_TIMEOUT.value

    @pytest.mark.asyncio
    async def test_navigation_stall(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        site.stalled.add("conv-002")

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.DONE
        assert len(state.captured) == 4
        assert len(state.failures) == 1
        failure = state.failures[0]
        assert failure.item_id == "conv-002"
        assert failure.kind is ErrorKind.NAVIGATION_STALL
        assert failure.cursor == 2
        assert len(_types(ledger, LedgerEventType.NAVIGATION_RETRY)) == 1
        assert len(_types(ledger, LedgerEventType.ITEM_FAILED)) == 1
        assert verify_report(state)["admissible"]

    @pytest.mark.asyncio
    async def test_unstable_content_times_out(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        site.conversations["conv-001"] = []

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        record = state.record_for("conv-001")
        assert record.status is RecordStatus.TIMEOUT
        assert record.evidence["gate"]["note"] == "never_stabilized_nonempty"
        timeouts = _types(ledger, LedgerEventType.CAPTURE_TIMEOUT)
        assert [e.payload["item_id"] for e in timeouts] == ["conv-001"]
        assert state.phase is Phase.DONE

    @pytest.mark.asyncio
    async def test_empty_capture_is_flagged(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        site.unreadable.add("conv-003")

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.record_for("conv-003").status is RecordStatus.EMPTY
        assert [e.payload["item_id"] for e in _types(ledger, LedgerEventType.CAPTURE_EMPTY)] == ["conv-003"]
        assert state.cursor == 5

    @pytest.mark.asyncio
    async def test_sink_failure(self, make_machine, make_sink, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=4, sink=make_sink(fail=True))

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.DONE
        assert len(state.captured) == 4
        assert state.failures == []
        assert len(state.sink_failures) == 4
        assert state.sink_failures[0].kind is ErrorKind.SINK_FAILURE
        assert len(_types(ledger, LedgerEventType.SINK_FAILED)) == 4
        assert RecordIndex(kv).get("conv-000").artifacts == []


class TestFailClosed:
    """Run-level failures stop the run."""

    @pytest.mark.asyncio
    async def test_low_count(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=2)

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == "LOW_COUNT_2"
        assert state.queue == []
        assert site.navigations == [site.anchor]
        closed = _types(ledger, LedgerEventType.FAIL_CLOSED)
        assert closed[0].payload == {"kind": "ENUMERATION_FAILURE", "reason": "LOW_COUNT_2"}

    @pytest.mark.asyncio
    async def test_missing_queue(self, make_machine, kv) -> None:
        machine, site = make_machine()
        RunStore(kv).save(RunState(phase=Phase.OPEN_ITEM, anchor=site.anchor))

        await machine.tick()

        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == QUEUE_MISSING

    @pytest.mark.asyncio
    async def test_unreadable_run_state(self, make_machine, kv, ledger) -> None:
        machine, _ = make_machine()
        kv.set("run_state", {"phase": "BOGUS", "cursor": -1})

        result = await machine.tick()

        assert result.ran
        assert result.reason == INVALID_RUN_STATE
        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == INVALID_RUN_STATE
        assert ledger.last().type is LedgerEventType.FAIL_CLOSED

    def test_illegal_transition(self, make_machine) -> None:
        machine, _ = make_machine()
        state = RunState(phase=Phase.DISCOVER)

        with pytest.raises(StateTransitionException) as exc_info:
            machine._transition(state, Phase.DONE, Trigger.MANUAL)

        assert exc_info.value.context["to_state"] == "DONE"
        assert state.phase is Phase.DISCOVER


    @pytest.mark.asyncio
    async def test_anchor_unreachable_before_discovery(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        site.login_after = 0

        await machine.start(site.anchor)
        results = await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == ANCHOR_UNREACHABLE
        assert state.queue == []
        assert site.navigations == [site.anchor, site.anchor]
        assert site.location.endswith("/auth/login")
        assert len(_types(ledger, LedgerEventType.NAVIGATION_RETRY)) == 1
        closed = _types(ledger, LedgerEventType.FAIL_CLOSED)
        assert closed[0].payload == {"kind": "NAVIGATION_STALL", "reason": ANCHOR_UNREACHABLE}
        assert results[-1].reason == Phase.FAIL.value

    @pytest.mark.asyncio
    async def test_anchor_unreachable_on_return(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        site.login_after = 1

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == ANCHOR_UNREACHABLE
        assert state.cursor == 1
        assert [r.item_id for r in state.captured] == ["conv-000"]
        first_item = next(iter(site.items))
        assert site.navigations == [site.anchor, first_item, site.anchor, site.anchor]
        retries = _types(ledger, LedgerEventType.NAVIGATION_RETRY)
        assert [e.payload["phase"] for e in retries] == ["RETURN"]

    @pytest.mark.asyncio
    async def test_no_anchor_retries(self, make_machine, run_to_end, kv) -> None:
        machine, site = make_machine(count=5, nav_max_retries=0)
        site.login_after = 1

        await machine.start(site.anchor)
        await run_to_end(machine)

        state = RunStore(kv).load()
        assert state.phase is Phase.FAIL
        assert state.fail_reason == ANCHOR_UNREACHABLE
        assert site.navigations.count(site.anchor) == 2

class TestResume:
    """Resuming a persisted run after a reload."""

    @pytest.fixture
    def persisted(self, kv, items):
        """A run interrupted at cursor 3 of 5, as a reload leaves it."""

        def persist(anchor: str, phase: Phase = Phase.IN_ITEM) -> RunState:
            state = RunState(phase=phase, cursor=3, queue=items(5), anchor=anchor)
            RunStore(kv).save(state)
            return state

        return persist

    @pytest.mark.asyncio
    async def test_cold_resume_navigates_to_cursor(self, make_machine, persisted, run_to_end, kv) -> None:
        machine, site = make_machine(count=5)
        state = persisted(site.anchor)

        result = await machine.resume()
        await run_to_end(machine)

        assert result.navigated
        assert site.navigations[0] == state.queue[3].url
        final = RunStore(kv).load()
        assert final.run_id == state.run_id
        assert final.phase is Phase.DONE
        assert [r.item_id for r in final.captured] == ["conv-003", "conv-004"]

    @pytest.mark.asyncio
    async def test_resume_when_item_already_displayed(self, make_machine, persisted, kv, ledger) -> None:
        """After a reload that landed on the item, capture happens without navigating."""
        machine, site = make_machine(count=5)
        state = persisted(site.anchor)
        site.location = state.queue[3].url

        await machine.resume()

        final = RunStore(kv).load()
        assert final.record_for("conv-003") is not None
        assert final.cursor == 4
        assert final.phase is Phase.RETURN
        assert site.navigations == [site.anchor]
        assert _types(ledger, LedgerEventType.CHAT_COMPLETE)[0].payload["cursor"] == 3

    @pytest.mark.asyncio
    async def test_resume_from_open_item(self, make_machine, persisted, run_to_end, kv) -> None:
        machine, site = make_machine(count=5)
        persisted(site.anchor, Phase.OPEN_ITEM)

        await machine.resume()
        await run_to_end(machine)

        final = RunStore(kv).load()
        assert [r.item_id for r in final.captured] == ["conv-003", "conv-004"]

    @pytest.mark.asyncio
    async def test_recapture_replaces_record(self, make_machine, run_to_end, kv) -> None:
        """Re-entering an item whose record exists replaces it by item id."""
        machine, site = make_machine(count=4)
        await machine.start(site.anchor)
        await run_to_end(machine)
        state = RunStore(kv).load()
        state.phase = Phase.OPEN_ITEM
        state.cursor = 1
        RunStore(kv).save(state)

        await machine.resume()
        await run_to_end(machine)

        final = RunStore(kv).load()
        assert len(final.captured) == 4
        assert len({r.item_id for r in final.captured}) == 4
        assert len(RecordIndex(kv)) == 4


class TestStop:
    """Cooperative stop and resume."""

    @pytest.mark.asyncio
    async def test_stop_then_resume(self, make_machine, run_to_end, kv, ledger) -> None:
        machine, site = make_machine(count=5)
        await machine.start(site.anchor)
        for _ in range(4):
            await machine.tick()

        assert machine.request_stop() is True
        stopped = await machine.tick()
        navigations = len(site.navigations)

        assert not stopped.ran
        assert stopped.reason == "STOP_REQUESTED"
        assert RunStore(kv).load().stop_requested
        assert len(site.navigations) == navigations
        assert machine.status()["last_event"] == LedgerEventType.STOP_REQUESTED.value

        await machine.resume()
        await run_to_end(machine)

        final = RunStore(kv).load()
        assert final.phase is Phase.DONE
        assert not final.stop_requested
        assert [r.item_id for r in final.captured] == [f"conv-{i:03d}" for i in range(5)]
        assert len(_types(ledger, LedgerEventType.STOP_CLEARED)) == 1

    @pytest.mark.asyncio
    async def test_stop_during_enumeration(self, make_machine, run_to_end, kv) -> None:
        machine, site = make_machine(count=5)
        machine.enumerator.extractor = StoppingExtractor(machine.enumerator.extractor, machine)

        await machine.start(site.anchor)
        result = await machine.tick()

        assert result.ran
        assert result.reason == STOPPED
        state = RunStore(kv).load()
        assert state.phase is Phase.DISCOVER
        assert state.stop_requested
        assert state.queue == []

        await machine.resume()
        await run_to_end(machine)

        assert RunStore(kv).load().phase is Phase.DONE

    @pytest.mark.asyncio
    async def test_stop_without_active_run(self, make_machine) -> None:
        machine, _ = make_machine()
        assert machine.request_stop() is False
        assert machine.clear_stop() is False

    @pytest.mark.asyncio
    async def test_concurrent_tick_is_coalesced(self, make_machine) -> None:
        machine, site = make_machine()
        await machine.start(site.anchor)

        async with machine._lock:
            result = await machine.tick(Trigger.ROUTE_CHANGE)

        assert not result.ran
        assert result.reason == "TICK_IN_FLIGHT"


class TestStatusAndRepair:
    @pytest.mark.asyncio
    async def test_status(self, make_machine, run_to_end) -> None:
        machine, site = make_machine(count=4)
        assert machine.status() == {"run_id": None, "phase": None}

        await machine.start(site.anchor)
        await run_to_end(machine)
        status = machine.status()

        assert status["phase"] == "DONE"
        assert status["captured"] == 4
        assert status["last_event"] == LedgerEventType.RUN_COMPLETE.value
        assert status["fail_reason"] is None

    @pytest.mark.asyncio
    async def test_repair_removes_empty_record(self, make_machine, run_to_end, kv) -> None:
        machine, site = make_machine(count=5)
        site.unreadable.add("conv-001")
        await machine.start(site.anchor)
        await run_to_end(machine)

        preview = machine.repair()
        applied = machine.repair(dry_run=False)

        assert preview.remove_count == 1
        assert applied.total_after == 4
        assert RunStore(kv).load().record_for("conv-001") is None
        assert RecordIndex(kv).get("conv-001") is None
