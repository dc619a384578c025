"""Tick scheduling from route changes and a fallback poll."""

import asyncio
import time

from ..config import HarvestSettings
from ..exceptions import HarvestException
from ..logging import get_logger
from ..model import RunState
from .machine import RunStateMachine, TickResult, Trigger

logger = get_logger(__name__)


class TickDriver:
    """Feeds ticks to a RunStateMachine.

    Route-change notifications schedule one debounced tick each; a periodic
    poll covers route changes that are never reported. A notification arriving
    while a tick is pending or running is coalesced into it.
    """

    def __init__(
        self,
        machine: RunStateMachine,
        poll_interval_ms: int = 500,
        route_settle_ms: int = 250,
        deadline_s: float | None = None,
    ) -> None:
        self.machine = machine
        self.poll_interval_ms = poll_interval_ms
        self.route_settle_ms = route_settle_ms
        self.deadline_s = deadline_s
        self.ticks = 0
        self.last_result: TickResult | None = None
        self._pending: asyncio.Task[TickResult] | None = None

    @classmethod
    def from_settings(cls, machine: RunStateMachine, settings: HarvestSettings) -> "TickDriver":
        return cls(
            machine,
            poll_interval_ms=settings.tick_poll_interval_ms,
            route_settle_ms=settings.route_settle_ms,
            deadline_s=settings.run_deadline_s,
        )

    def notify(self, trigger: Trigger = Trigger.ROUTE_CHANGE) -> bool:
        """Schedule a tick for ``trigger``.

        Returns:
            False if the notification was coalesced into a pending tick
        """
        if self._pending is not None and not self._pending.done():
            logger.debug("trigger_coalesced", trigger=trigger.value)
            return False
        self._pending = asyncio.get_running_loop().create_task(self._debounced_tick(trigger))
        return True

    async def _debounced_tick(self, trigger: Trigger) -> TickResult:
        if self.route_settle_ms:
            await asyncio.sleep(self.route_settle_ms / 1000)
        return await self._tick(trigger)

    async def _tick(self, trigger: Trigger) -> TickResult:
        try:
            result = await self.machine.tick(trigger)
        except HarvestException as e:
            logger.error("tick_failed", trigger=trigger.value, error=str(e), error_code=e.error_code)
            return TickResult(trigger=trigger, ran=False, reason=e.error_code)

        if result.ran:
            self.ticks += 1
        self.last_result = result
        return result

    def _settled(self, state: RunState | None) -> bool:
        return state is None or not state.is_active or state.stop_requested

    async def run_until_settled(self, deadline_s: float | None = None) -> RunState | None:
        """Tick until the run is terminal, stopped, or the deadline passes.

        Returns:
            The final persisted RunState
        """
        deadline_s = deadline_s if deadline_s is not None else self.deadline_s
        started = time.monotonic()

        try:
            while True:
                await self._tick(Trigger.POLL)
                state = self.machine.store.load()
                if self._settled(state):
                    break
                if deadline_s is not None and time.monotonic() - started >= deadline_s:
                    logger.warning("run_deadline_reached", deadline_s=deadline_s)
                    break
                await asyncio.sleep(self.poll_interval_ms / 1000)
        finally:
            await self.cancel_pending()

        state = self.machine.store.load()
        logger.info(
            "driver_settled",
            ticks=self.ticks,
            phase=state.phase.value if state else None,
            cursor=state.cursor if state else None,
        )
        return state

    async def cancel_pending(self) -> None:
        if self._pending is None or self._pending.done():
            return
        self._pending.cancel()
        try:
            await self._pending
        except asyncio.CancelledError:
            logger.debug("pending_tick_cancelled")
