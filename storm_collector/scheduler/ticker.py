"""Tick sources driving the polling loop."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

import structlog
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType


class Ticker(ABC):
    """Something the scheduler can wait on between cycles."""

    @abstractmethod
    async def wait(self) -> None:
        """Return when the next tick fires."""

    def close(self) -> None:
        """Release timer resources; no further ticks are expected."""


def build_trigger(schedule: ScheduleConfig) -> BaseTrigger:
    if schedule.type is ScheduleType.CRON:
        return CronTrigger.from_crontab(str(schedule.value), timezone="UTC")
    if schedule.type is ScheduleType.INTERVAL:
        return IntervalTrigger(seconds=schedule.interval().total_seconds(), timezone="UTC")
    raise ValueError(f"Unknown schedule type: {schedule.type}")


class TriggerTicker(Ticker):
    """Sleep until the next fire time of an APScheduler trigger.

    Fire times that already passed while a cycle was running are dropped, so
    a slow cycle is followed by the next future tick rather than a burst.
    """

    def __init__(
        self,
        trigger: BaseTrigger,
        clock: Callable[[], datetime] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.trigger = trigger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or structlog.get_logger("storm_collector.scheduler")
        self._previous: datetime | None = None
        self._closed = False

    @classmethod
    def from_schedule(cls, schedule: ScheduleConfig, **kwargs) -> "TriggerTicker":
        return cls(build_trigger(schedule), **kwargs)

    def next_fire_time(self) -> datetime:
        now = self._clock()
        fire = self.trigger.get_next_fire_time(self._previous, now)
        missed = 0
        while fire is not None and fire < now:
            missed += 1
            fire = self.trigger.get_next_fire_time(fire, now)
        if fire is None:
            raise RuntimeError("schedule produced no further fire times")
        if missed:
            self.logger.warning("ticks_missed", count=missed, next_fire_time=fire.isoformat())
        return fire

    async def wait(self) -> None:
        if self._closed:
            raise RuntimeError("ticker is closed")
        fire = self.next_fire_time()
        delay = (fire - self._clock()).total_seconds()
        await asyncio.sleep(max(0.0, delay))
        self._previous = fire

    def close(self) -> None:
        self._closed = True


__all__ = ["Ticker", "TriggerTicker", "build_trigger"]
