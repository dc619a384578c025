"""Persistent run store: the narrow load/save pair for RunState."""

from pydantic import ValidationError

from ..exceptions import InvalidRunStateException
from ..logging import get_logger
from ..model import RunState
from .kv_store import KeyValueStore

logger = get_logger(__name__)

RUN_STATE_KEY = "run_state"


class RunStore:
    """Reads and writes the single RunState document.

    Every save is a full replacement. ``load`` returns None when no run has
    been started and raises when the stored document is unreadable.
    """

    def __init__(self, kv: KeyValueStore, key: str = RUN_STATE_KEY) -> None:
        self.kv = kv
        self.key = key

    def load(self) -> RunState | None:
        data = self.kv.get(self.key)
        if data is None:
            return None
        try:
            return RunState.model_validate(data)
        except ValidationError as e:
            logger.error("run_state_invalid", key=self.key, errors=e.error_count())
            raise InvalidRunStateException(str(e), key=self.key) from e

    def save(self, state: RunState) -> None:
        self.kv.set(self.key, state.model_dump(mode="json"))
        logger.debug(
            "run_state_saved",
            run_id=state.run_id,
            phase=state.phase.value,
            cursor=state.cursor,
        )

    def clear(self) -> bool:
        cleared = self.kv.delete(self.key)
        if cleared:
            logger.info("run_state_cleared", key=self.key)
        return cleared
