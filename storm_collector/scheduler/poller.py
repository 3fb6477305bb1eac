"""Polling loop driving the report collector."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from ..collector import CollectionOutcome, ReportCollector
from ..errors import FatalAuthFailure
from .ticker import Ticker


class SchedulerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class PollingScheduler:
    """Run one collection cycle per tick until stopped.

    Cycles never overlap: the next tick is only awaited once the previous
    cycle has finished. Setting the stop event cancels whatever is in flight.
    A ``FatalAuthFailure`` stops the scheduler and is re-raised; any other
    cycle error is logged and polling continues.
    """

    def __init__(
        self,
        collector: ReportCollector,
        ticker: Ticker,
        logger: structlog.BoundLogger | None = None,
        on_cycle: Callable[[list[CollectionOutcome]], None] | None = None,
    ) -> None:
        self.collector = collector
        self.ticker = ticker
        self.logger = logger or structlog.get_logger("storm_collector").bind(component="scheduler")
        self.on_cycle = on_cycle
        self.state = SchedulerState.RUNNING
        self.cycles = 0

    async def run(self, stop_event: asyncio.Event) -> None:
        if self.state is SchedulerState.STOPPED:
            raise RuntimeError("scheduler already stopped")
        self.logger.info("scheduler_started")
        try:
            while not stop_event.is_set():
                tick = await self._until_stopped(self.ticker.wait(), stop_event)
                if tick is None or stop_event.is_set():
                    break
                tick.result()

                cycle = await self._until_stopped(self.collector.collect_and_publish(), stop_event)
                if cycle is None:
                    self.logger.info("cycle_cancelled")
                    break
                try:
                    outcomes = cycle.result()
                except FatalAuthFailure as exc:
                    self.logger.error(
                        "fatal_auth_failure", component=exc.component, error=str(exc)
                    )
                    raise
                except Exception as exc:  # noqa: BLE001
                    self.logger.exception("cycle_failed", error=str(exc))
                    continue
                self.cycles += 1
                if self.on_cycle is not None:
                    self.on_cycle(outcomes)
        finally:
            self._stop()

    def _stop(self) -> None:
        if self.state is SchedulerState.STOPPED:
            return
        self.state = SchedulerState.STOPPED
        self.ticker.close()
        self.logger.info("scheduler_stopped", cycles=self.cycles)

    @staticmethod
    async def _until_stopped(
        awaitable: Awaitable[Any], stop_event: asyncio.Event
    ) -> asyncio.Future | None:
        """Await ``awaitable`` unless the stop event fires first.

        Returns the finished task, or ``None`` when it was cancelled because
        of the stop event.
        """

        task = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if task.cancelled():
            return None
        return task


__all__ = ["PollingScheduler", "SchedulerState"]
