"""Run state machine.

The machine owns a RunState and drives it through
DISCOVER -> OPEN_ITEM -> IN_ITEM -> RETURN -> OPEN_ITEM ... -> DONE.

Every tick starts by reading the RunState from the store, so any tick may be
the first one after a reload. State is always persisted before a navigation
is issued: whatever happens to the page afterwards, the next tick resumes at
the right cursor.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..capture import Capture, RepairPlan, repair_records
from ..config import HarvestSettings
from ..enumeration import STOPPED, StabilityGatedEnumerator
from ..exceptions import (
    BusyTimeout,
    EnumerationFailure,
    ErrorKind,
    InvalidRunStateException,
    NavigationStall,
    SinkFailure,
    StateTransitionException,
)
from ..interfaces import ArtifactSink, ChangeFeed, Navigator, RunBoundSink, ViewProbe
from ..logging import TransitionLogger, get_logger
from ..model import (
    FailureEvent,
    IndexEntry,
    ItemRef,
    LedgerEventType,
    Phase,
    Record,
    RecordStatus,
    RunState,
    utc_now,
)
from ..persistence import Ledger, RecordIndex, RunStore
from ..stabilization import ContentStabilizationGate
from .control import RunControl

logger = get_logger(__name__)

QUEUE_MISSING = "QUEUE_MISSING"
INVALID_RUN_STATE = "INVALID_RUN_STATE"
ANCHOR_UNREACHABLE = "ANCHOR_UNREACHABLE"

ALLOWED_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.DISCOVER}),
    Phase.DISCOVER: frozenset({Phase.OPEN_ITEM, Phase.FAIL}),
    Phase.OPEN_ITEM: frozenset({Phase.IN_ITEM, Phase.DONE, Phase.FAIL}),
    Phase.IN_ITEM: frozenset({Phase.OPEN_ITEM, Phase.RETURN, Phase.FAIL}),
    Phase.RETURN: frozenset({Phase.OPEN_ITEM, Phase.FAIL}),
    Phase.DONE: frozenset(),
    Phase.FAIL: frozenset(),
}


class Trigger(str, Enum):
    """What caused a tick."""

    STARTUP = "STARTUP"
    ROUTE_CHANGE = "ROUTE_CHANGE"
    POLL = "POLL"
    MANUAL = "MANUAL"


class _Step(Enum):
    CONTINUE = "continue"
    NAVIGATED = "navigated"
    WAIT = "wait"
    TERMINAL = "terminal"


@dataclass
class MachineConfig:
    """Wait budgets and navigation policy."""

    busy_wait_budget_ms: int = 45000
    busy_poll_ms: int = 500
    nav_wait_budget_ms: int = 15000
    nav_poll_ms: int = 250
    nav_max_retries: int = 2
    return_to_anchor: bool = True

    @classmethod
    def from_settings(cls, settings: HarvestSettings) -> "MachineConfig":
        return cls(
            busy_wait_budget_ms=settings.busy_wait_budget_ms,
            busy_poll_ms=settings.busy_poll_ms,
            nav_wait_budget_ms=settings.nav_wait_budget_ms,
            nav_poll_ms=settings.nav_poll_ms,
            nav_max_retries=settings.nav_max_retries,
            return_to_anchor=settings.return_to_anchor,
        )


@dataclass
class TickResult:
    """Outcome of one tick.

    ``ran`` is False when the tick was a no-op (no run, terminal run, stop
    requested, or another tick in flight); ``reason`` says why.
    """

    trigger: Trigger
    ran: bool
    phase_before: Phase | None = None
    phase_after: Phase | None = None
    cursor: int | None = None
    navigated: bool = False
    reason: str | None = None


class RunStateMachine:
    """Cooperative, resumable harvesting run.

    Example:
        >>> machine = RunStateMachine(store, ledger, enumerator, navigator, probe, gate, capture)
        >>> await machine.start("https://chatgpt.com/g/g-p-abc/project")
        >>> while (await machine.tick(Trigger.POLL)).ran:
        ...     pass
    """

    def __init__(
        self,
        store: RunStore,
        ledger: Ledger,
        enumerator: StabilityGatedEnumerator,
        navigator: Navigator,
        probe: ViewProbe,
        gate: ContentStabilizationGate,
        capture: Capture,
        feed: ChangeFeed | None = None,
        sink: ArtifactSink | None = None,
        index: RecordIndex | None = None,
        config: MachineConfig | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.enumerator = enumerator
        self.navigator = navigator
        self.probe = probe
        self.gate = gate
        self.capture = capture
        self.feed = feed
        self.sink = sink
        self.index = index
        self.config = config or MachineConfig()
        self.transitions = TransitionLogger(logger)
        self.control = RunControl(store, ledger)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, anchor: str | None = None) -> TickResult:
        """Begin a new run, replacing any previous one, and tick once."""
        async with self._lock:
            state = RunState.new(anchor=anchor)
            self._bind(state.run_id)
            if self.index is not None:
                self.index.clear()

            self.ledger.append(LedgerEventType.RUN_START, {"anchor": anchor})
            self._transition(state, Phase.DISCOVER, Trigger.STARTUP)
            self.store.save(state)
            logger.info("run_started", run_id=state.run_id, anchor=anchor)

        return await self.tick(Trigger.STARTUP)

    async def resume(self) -> TickResult:
        """Continue a persisted run from its stored phase and cursor."""
        state = self._load()
        if state is not None and state.stop_requested and state.is_active:
            self.clear_stop()
        return await self.tick(Trigger.STARTUP)

    def request_stop(self) -> bool:
        """Persist a cooperative stop request; False if no run is active."""
        return self.control.request_stop()

    def clear_stop(self) -> bool:
        return self.control.clear_stop()

    def status(self) -> dict[str, Any]:
        """Summary of the persisted run and its last ledger event."""
        return self.control.status()

    def repair(self, dry_run: bool = True) -> RepairPlan:
        return repair_records(self.store, self.ledger, dry_run=dry_run, index=self.index)

    async def tick(self, trigger: Trigger = Trigger.POLL) -> TickResult:
        """Advance the run by one cooperative step.

        A trigger arriving while another tick is running is a no-op.
        """
        if self._lock.locked():
            logger.debug("tick_coalesced", trigger=trigger.value)
            return TickResult(trigger=trigger, ran=False, reason="TICK_IN_FLIGHT")

        async with self._lock:
            return await self._tick(trigger)

    # ------------------------------------------------------------------
    # Tick internals
    # ------------------------------------------------------------------

    def _load(self) -> RunState | None:
        return self.store.load()

    def _save(self, state: RunState) -> None:
        """Persist ``state`` without losing a stop requested during this tick."""
        stored = self._load()
        if stored is not None and stored.run_id == state.run_id and stored.stop_requested:
            state.stop_requested = True
        self.store.save(state)

    def _bind(self, run_id: str) -> None:
        self.ledger.bind(run_id)
        if isinstance(self.sink, RunBoundSink):
            self.sink.bind(run_id)

    async def _stop_requested(self) -> bool:
        state = self._load()
        return state is None or state.stop_requested

    async def _tick(self, trigger: Trigger) -> TickResult:
        try:
            state = self._load()
        except InvalidRunStateException as e:
            return self._fail_invalid_state(trigger, e)

        if state is None:
            return TickResult(trigger=trigger, ran=False, reason="NO_RUN")

        if not state.is_active:
            return TickResult(
                trigger=trigger,
                ran=False,
                phase_before=state.phase,
                phase_after=state.phase,
                cursor=state.cursor,
                reason=state.phase.value,
            )

        if state.stop_requested:
            return TickResult(
                trigger=trigger,
                ran=False,
                phase_before=state.phase,
                phase_after=state.phase,
                cursor=state.cursor,
                reason="STOP_REQUESTED",
            )

        self._bind(state.run_id)
        phase_before = state.phase
        logger.debug("tick_started", trigger=trigger.value, phase=state.phase.value, cursor=state.cursor)

        handlers: dict[Phase, Callable[[RunState, Trigger], Awaitable[_Step]]] = {
            Phase.DISCOVER: self._discover,
            Phase.OPEN_ITEM: self._open_item,
            Phase.IN_ITEM: self._in_item,
            Phase.RETURN: self._return,
        }

        step = _Step.CONTINUE
        reason = None
        while step is _Step.CONTINUE:
            if not state.is_active:
                step = _Step.TERMINAL
                break
            if await self._stop_requested():
                reason = "STOP_REQUESTED"
                break
            step = await handlers[state.phase](state, trigger)
            if step is _Step.WAIT and state.phase is Phase.DISCOVER:
                reason = STOPPED

        if step is _Step.TERMINAL:
            reason = state.phase.value

        return TickResult(
            trigger=trigger,
            ran=True,
            phase_before=phase_before,
            phase_after=state.phase,
            cursor=state.cursor,
            navigated=step is _Step.NAVIGATED,
            reason=reason,
        )

    def _transition(self, state: RunState, to_phase: Phase, trigger: Trigger, **context: Any) -> None:
        from_phase = state.phase
        if to_phase not in ALLOWED_TRANSITIONS[from_phase]:
            raise StateTransitionException(from_phase.value, to_phase.value, run_id=state.run_id)
        state.phase = to_phase
        self.transitions.log_transition(
            from_phase.value,
            to_phase.value,
            trigger=trigger.value,
            success=to_phase is not Phase.FAIL,
            run_id=state.run_id,
            cursor=state.cursor,
            **context,
        )
        self.ledger.append(
            LedgerEventType.PHASE_TRANSITION,
            {"from": from_phase.value, "to": to_phase.value, "cursor": state.cursor, **context},
        )

    def _fail(self, state: RunState, trigger: Trigger, reason: str, kind: ErrorKind) -> _Step:
        state.fail_reason = reason
        state.finished_at = utc_now()
        self._transition(state, Phase.FAIL, trigger, reason=reason)
        self._save(state)
        self.ledger.append(LedgerEventType.FAIL_CLOSED, {"kind": kind.value, "reason": reason})
        logger.error("run_failed", run_id=state.run_id, kind=kind.value, reason=reason)
        return _Step.TERMINAL

    def _fail_invalid_state(self, trigger: Trigger, error: InvalidRunStateException) -> TickResult:
        logger.error("run_state_unreadable", error=str(error))
        state = RunState(phase=Phase.FAIL, fail_reason=INVALID_RUN_STATE, finished_at=utc_now())
        self.store.save(state)
        self.ledger.append(
            LedgerEventType.FAIL_CLOSED,
            {"kind": INVALID_RUN_STATE, "reason": error.message},
            run_id=state.run_id,
        )
        return TickResult(
            trigger=trigger,
            ran=True,
            phase_after=Phase.FAIL,
            cursor=0,
            reason=INVALID_RUN_STATE,
        )

    async def _navigate(self, target: ItemRef | str) -> None:
        try:
            if isinstance(target, ItemRef):
                await self.navigator.go_to_item(target)
            else:
                await self.navigator.go_to_anchor(target)
        except NavigationStall as e:
            # the next tick observes the view and retries
            logger.warning("navigation_not_issued", error=str(e))

    async def _at_anchor(self, state: RunState, wait: bool) -> bool:
        anchor = state.anchor
        if not anchor:
            return True

        async def at_anchor() -> bool:
            return await self.probe.is_at_anchor(anchor)

        if not wait:
            return await at_anchor()
        return await self.gate.wait_until(
            at_anchor, self.config.nav_wait_budget_ms, self.config.nav_poll_ms
        )

    async def _renavigate_anchor(self, state: RunState, trigger: Trigger, initial: int) -> _Step:
        """Navigate to the anchor, or fail closed once its retries are spent.

        ``initial`` is how many attempts are a first navigation rather than a
        retry: 1 in DISCOVER, which issues it here, 0 in RETURN, whose first
        navigation is issued when the item is left.
        """
        anchor = state.anchor
        if state.nav_attempts - initial >= self.config.nav_max_retries:
            location = await self.probe.current_location()
            logger.error("anchor_unreachable", anchor=anchor, location=location)
            return self._fail(state, trigger, ANCHOR_UNREACHABLE, ErrorKind.NAVIGATION_STALL)

        state.nav_attempts += 1
        self._save(state)
        if state.nav_attempts > initial:
            self.ledger.append(
                LedgerEventType.NAVIGATION_RETRY,
                {"target": anchor, "phase": state.phase.value, "attempt": state.nav_attempts - initial},
            )
        self.ledger.append(LedgerEventType.NAVIGATE, {"target": anchor, "phase": state.phase.value})
        await self._navigate(anchor)
        return _Step.NAVIGATED

    async def _discover(self, state: RunState, trigger: Trigger) -> _Step:
        anchor = state.anchor
        if not await self._at_anchor(state, wait=state.nav_attempts > 0):
            logger.info("navigating_to_anchor", anchor=anchor, attempt=state.nav_attempts)
            return await self._renavigate_anchor(state, trigger, initial=1)

        state.nav_attempts = 0
        self.ledger.append(LedgerEventType.DISCOVERY_START, {"anchor": anchor})

        def on_progress(round_index: int, count: int, stable: int) -> None:
            self.ledger.append(
                LedgerEventType.ENUMERATE_PROGRESS,
                {"round": round_index, "count": count, "stable": stable},
            )

        try:
            result = await self.enumerator.enumerate(
                should_stop=self._stop_requested, on_progress=on_progress
            )
        except EnumerationFailure as e:
            return self._fail(state, trigger, e.reason, ErrorKind.ENUMERATION_FAILURE)

        if not result.ok:
            if result.reason == STOPPED:
                return _Step.WAIT
            failure = EnumerationFailure(result.reason or "UNKNOWN", rounds=result.rounds)
            return self._fail(state, trigger, failure.reason, ErrorKind.ENUMERATION_FAILURE)

        state.queue = list(result.items)
        state.cursor = 0
        self.ledger.append(
            LedgerEventType.DISCOVERY_COMPLETE,
            {"count": result.count, "rounds": result.rounds, "scrollable": result.scrollable},
        )
        self._transition(state, Phase.OPEN_ITEM, trigger, count=result.count)
        self._save(state)
        return _Step.CONTINUE

    async def _open_item(self, state: RunState, trigger: Trigger) -> _Step:
        if not state.queue:
            return self._fail(state, trigger, QUEUE_MISSING, ErrorKind.ENUMERATION_FAILURE)

        if state.cursor >= len(state.queue):
            state.finished_at = utc_now()
            self._transition(state, Phase.DONE, trigger)
            self._save(state)
            self.ledger.append(LedgerEventType.RUN_COMPLETE, state.summary())
            logger.info("run_complete", **state.summary())
            return _Step.TERMINAL

        item = state.queue[state.cursor]
        state.nav_attempts = 0
        self._transition(state, Phase.IN_ITEM, trigger, item_id=item.item_id)
        self._save(state)

        self.ledger.append(
            LedgerEventType.NAVIGATE,
            {"cursor": state.cursor, "item_id": item.item_id, "url": item.url},
        )
        await self._navigate(item)
        return _Step.NAVIGATED

    async def _in_item(self, state: RunState, trigger: Trigger) -> _Step:
        item = state.current_item
        if item is None:
            if not state.queue:
                return self._fail(state, trigger, QUEUE_MISSING, ErrorKind.ENUMERATION_FAILURE)
            self._transition(state, Phase.OPEN_ITEM, trigger)
            self._save(state)
            return _Step.CONTINUE

        async def at_item() -> bool:
            return await self.probe.is_at_item(item)

        current = await self.gate.wait_until(
            at_item, self.config.nav_wait_budget_ms, self.config.nav_poll_ms
        )

        if not current:
            if state.nav_attempts < self.config.nav_max_retries:
                state.nav_attempts += 1
                self._save(state)
                self.ledger.append(
                    LedgerEventType.NAVIGATION_RETRY,
                    {"cursor": state.cursor, "item_id": item.item_id, "attempt": state.nav_attempts},
                )
                await self._navigate(item)
                return _Step.NAVIGATED

            stall = NavigationStall(item.item_id, state.nav_attempts + 1)
            state.failures.append(
                FailureEvent(
                    item_id=item.item_id,
                    kind=ErrorKind.NAVIGATION_STALL,
                    phase=state.phase,
                    reason=stall.message,
                    cursor=state.cursor,
                    context=stall.context,
                )
            )
            self.ledger.append(
                LedgerEventType.ITEM_FAILED,
                {"cursor": state.cursor, "item_id": item.item_id, "kind": ErrorKind.NAVIGATION_STALL.value},
            )
            logger.warning("navigation_stalled", item_id=item.item_id, cursor=state.cursor)
            return await self._advance(state, trigger)

        record = await self._capture_item(state, item)
        state.upsert_record(record)
        artifacts = await self._deliver(state, record)
        if self.index is not None:
            self.index.upsert(IndexEntry.from_record(record, artifacts))

        return await self._advance(state, trigger)

    async def _wait_idle(self, item: ItemRef) -> None:
        async def not_busy() -> bool:
            return not await self.probe.is_busy()

        idle = await self.gate.wait_until(
            not_busy, self.config.busy_wait_budget_ms, self.config.busy_poll_ms
        )
        if not idle:
            raise BusyTimeout(item.item_id, self.config.busy_wait_budget_ms)

    async def _capture_item(self, state: RunState, item: ItemRef) -> Record:
        self.ledger.append(LedgerEventType.CAPTURE_ATTEMPT, {"cursor": state.cursor, "item_id": item.item_id})

        try:
            await self._wait_idle(item)
        except BusyTimeout as e:
            self.ledger.append(
                LedgerEventType.SKIP_BUSY,
                {"cursor": state.cursor, "kind": e.error_code, **e.context},
            )
            logger.warning("item_busy_timeout", **e.context)
            record = await self.capture.capture(item, None, busy_timeout=True)
        else:
            gate_result = await self.gate.await_ready(self.feed, self.capture.extractor.last_message_text)
            record = await self.capture.capture(item, gate_result)
            if record.status is RecordStatus.TIMEOUT:
                self.ledger.append(
                    LedgerEventType.CAPTURE_TIMEOUT,
                    {"item_id": item.item_id, "kind": ErrorKind.CAPTURE_TIMEOUT.value, "note": gate_result.note},
                )

        if record.status is RecordStatus.EMPTY:
            self.ledger.append(
                LedgerEventType.CAPTURE_EMPTY,
                {"item_id": item.item_id, "kind": ErrorKind.CAPTURE_EMPTY.value},
            )

        self.ledger.append(
            LedgerEventType.CHAT_COMPLETE,
            {
                "cursor": state.cursor,
                "item_id": item.item_id,
                "status": record.status.value,
                "turns": record.turn_count,
            },
        )
        return record

    async def _deliver(self, state: RunState, record: Record) -> list[str]:
        if self.sink is None:
            return []
        try:
            artifacts = await self.sink.write(record)
        except SinkFailure as e:
            state.sink_failures.append(
                FailureEvent(
                    item_id=record.item_id,
                    kind=ErrorKind.SINK_FAILURE,
                    phase=state.phase,
                    reason=e.message,
                    cursor=state.cursor,
                    context=e.context,
                )
            )
            self.ledger.append(
                LedgerEventType.SINK_FAILED,
                {"item_id": record.item_id, "kind": ErrorKind.SINK_FAILURE.value, "reason": e.message},
            )
            logger.error("sink_write_failed", item_id=record.item_id, error=str(e))
            return []

        self.ledger.append(LedgerEventType.SHARD_EXPORTED, {"item_id": record.item_id, "files": artifacts})
        return artifacts

    async def _advance(self, state: RunState, trigger: Trigger) -> _Step:
        state.cursor += 1
        state.nav_attempts = 0

        if self.config.return_to_anchor and state.anchor:
            self._transition(state, Phase.RETURN, trigger)
            self._save(state)
            self.ledger.append(LedgerEventType.NAVIGATE, {"target": state.anchor, "phase": state.phase.value})
            await self._navigate(state.anchor)
            return _Step.NAVIGATED

        self._transition(state, Phase.OPEN_ITEM, trigger)
        self._save(state)
        return _Step.CONTINUE

    async def _return(self, state: RunState, trigger: Trigger) -> _Step:
        if not await self._at_anchor(state, wait=True):
            logger.info("return_renavigating", anchor=state.anchor, attempt=state.nav_attempts)
            return await self._renavigate_anchor(state, trigger, initial=0)

        state.nav_attempts = 0
        self._transition(state, Phase.OPEN_ITEM, trigger)
        self._save(state)
        return _Step.CONTINUE
