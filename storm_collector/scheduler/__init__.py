"""Scheduling: tick sources and the polling state machine."""

from .poller import PollingScheduler, SchedulerState
from .ticker import Ticker, TriggerTicker, build_trigger

__all__ = ["PollingScheduler", "SchedulerState", "Ticker", "TriggerTicker", "build_trigger"]
