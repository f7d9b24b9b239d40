# replay_pipeline/supervisors/scheduler.py
import logging
from datetime import timedelta
from typing import Callable, List

from replay_pipeline.clock import SystemClock

logger = logging.getLogger(__name__)


class PeriodicTicker:
    """
    Runs ``action`` every ``interval`` according to ``clock``.

    An exception raised by the action is logged and counted; the ticker
    stays scheduled, so one failed run never cancels the next.
    """

    def __init__(self, name: str, interval: timedelta, action: Callable, clock=None, run_immediately: bool = False):
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.action = action
        self.clock = clock or SystemClock()
        self.runs = 0
        self.failures = 0
        self.last_result = None
        self.next_run = self.clock.now() if run_immediately else self.clock.now() + interval

    def due(self, now=None) -> bool:
        now = now or self.clock.now()
        return now >= self.next_run

    def tick(self, now=None) -> bool:
        now = now or self.clock.now()
        if not self.due(now):
            return False
        try:
            self.last_result = self.action()
        except Exception:
            self.failures += 1
            logger.exception(f"Scheduled task {self.name} failed")
        finally:
            self.runs += 1
            self.next_run = now + self.interval
        return True


class Scheduler:
    def __init__(self, tickers: List[PeriodicTicker], clock=None, max_sleep: float = 60.0):
        self.tickers = list(tickers)
        self.clock = clock or SystemClock()
        self.max_sleep = max_sleep

    def run_pending(self) -> List[str]:
        now = self.clock.now()
        return [t.name for t in self.tickers if t.tick(now)]

    def seconds_until_next(self) -> float:
        if not self.tickers:
            return self.max_sleep
        now = self.clock.now()
        wait = min((t.next_run - now).total_seconds() for t in self.tickers)
        return min(self.max_sleep, max(0.0, wait))

    def run_forever(self, stop_event):
        logger.info("Scheduler started: " + ", ".join(f"{t.name} every {t.interval}" for t in self.tickers))
        while not stop_event.is_set():
            self.run_pending()
            stop_event.wait(self.seconds_until_next())
        logger.info("Scheduler stopped")
