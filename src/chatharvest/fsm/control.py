"""Run control that needs no browser: stop flag and status."""

from typing import Any

from ..logging import get_logger
from ..model import LedgerEventType
from ..persistence import Ledger, RunStore

logger = get_logger(__name__)


class RunControl:
    """Stop requests and status over the persisted run.

    Safe to use from a different process than the one driving the run: the
    running machine reads the stop flag from the store on every tick.
    """

    def __init__(self, store: RunStore, ledger: Ledger) -> None:
        self.store = store
        self.ledger = ledger

    def request_stop(self) -> bool:
        """Persist a cooperative stop request.

        Returns:
            False if there is no active run to stop
        """
        state = self.store.load()
        if state is None or not state.is_active:
            return False
        state.stop_requested = True
        self.store.save(state)
        self.ledger.append(
            LedgerEventType.STOP_REQUESTED,
            {"phase": state.phase.value, "cursor": state.cursor},
            run_id=state.run_id,
        )
        logger.info("stop_requested", run_id=state.run_id, phase=state.phase.value)
        return True

    def clear_stop(self) -> bool:
        state = self.store.load()
        if state is None or not state.stop_requested:
            return False
        state.stop_requested = False
        self.store.save(state)
        self.ledger.append(LedgerEventType.STOP_CLEARED, {"phase": state.phase.value}, run_id=state.run_id)
        return True

    def status(self) -> dict[str, Any]:
        state = self.store.load()
        if state is None:
            return {"run_id": None, "phase": None}

        summary = state.summary()
        last = self.ledger.last(run_id=state.run_id)
        summary["last_event"] = last.type.value if last else None
        summary["fail_reason"] = state.fail_reason
        return summary
