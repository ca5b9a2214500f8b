import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

import psutil

from .models import END_BUDGET, END_STOPPED, WindowReport

logger = logging.getLogger(__name__)

_stop = threading.Event()

MB = 1024 * 1024


def setup_signal_handlers(stop_event: threading.Event = _stop):
    def _handler(signum, frame):
        logger.info("Received signal %s. Stopping cron", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:
            # only the main thread may install handlers
            logger.debug("Signal handlers not installed outside the main thread")


@dataclass(frozen=True)
class WindowBudget:
    time_limit: int = 20
    item_limit: int = 0
    memory_limit_mb: int = 0

    @classmethod
    def from_settings(cls, settings) -> "WindowBudget":
        return cls(settings.time_limit, settings.item_limit, settings.memory_limit_mb)

    def time_exceeded(self, started_at: float) -> bool:
        return self.time_limit > 0 and time.monotonic() - started_at >= self.time_limit

    def memory_exceeded(self) -> bool:
        if not self.memory_limit_mb:
            return False
        rss = psutil.Process().memory_info().rss
        return rss >= self.memory_limit_mb * MB * 0.9

    def exceeded(self, started_at: float, handled: int) -> bool:
        if self.item_limit and handled >= self.item_limit:
            return True
        return self.time_exceeded(started_at) or self.memory_exceeded()


class Dispatcher:
    """Hands jobs to execution windows, one window per job at a time.

    `background=True` starts each requested window on a daemon thread right
    away. Either way the periodic trigger (`run_cron`) is what guarantees a
    running job eventually gets another window.
    """

    def __init__(self, store, settings, background: bool = True):
        self.store = store
        self.settings = settings
        self.background = background
        if settings.time_limit and settings.lock_duration <= settings.time_limit:
            logger.warning(
                "lock_duration (%ss) should exceed time_limit (%ss)",
                settings.lock_duration, settings.time_limit,
            )

    def budget(self) -> WindowBudget:
        return WindowBudget.from_settings(self.settings)

    def dispatch(self, job) -> Optional[threading.Thread]:
        if not self.background:
            logger.debug("[%s] Waiting for the scheduled trigger", job.action)
            return None
        t = threading.Thread(
            target=self.run_window, args=(job,), name=f"window-{job.action}", daemon=True
        )
        t.start()
        return t

    def run_window(self, job) -> Optional[WindowReport]:
        if not job.is_process_running():
            return None

        lock_key = job.get_process_lock_key()
        if not self.store.acquire_lock(lock_key, self.settings.lock_duration, job.clock()):
            logger.info("[%s] Another execution window is in progress", job.action)
            return None

        def heartbeat():
            self.store.renew_lock(lock_key, self.settings.lock_duration, job.clock())

        report = None
        try:
            report = job.handle(self.budget(), heartbeat)
            logger.debug(
                "[%s] Window ended (%s) after %d item(s)",
                job.action, report.ended_by, report.handled,
            )
        except Exception as e:
            logger.exception("[%s] Execution window failed", job.action)
            self._stop_job(job, e)
        finally:
            self.store.release_lock(lock_key)

        if report is None or not self.background:
            return report
        if report.ended_by == END_BUDGET:
            self.dispatch(job)
        elif report.ended_by == END_STOPPED and job.is_process_running():
            # restarted while this window was busy with the old run
            self.dispatch(job)
        return report

    def _stop_job(self, job, error: Exception):
        try:
            job.record_error(str(error) or error.__class__.__name__)
            job.stop()
        except Exception:
            logger.exception("[%s] Could not stop the job", job.action)

    def healthcheck(self, job) -> Optional[WindowReport]:
        """Periodic-trigger callback for one job."""
        if not job.is_process_running():
            return None
        notice = job.get_process_notice()
        if notice:
            logger.warning("[%s] %s", job.action, notice)
        return self.run_window(job)

    def drain(self, job, max_windows: Optional[int] = None) -> List[WindowReport]:
        """Run windows back to back until the job leaves the running state."""
        reports = []
        while job.is_process_running():
            report = self.run_window(job)
            if report is None:
                break
            reports.append(report)
            if max_windows and len(reports) >= max_windows:
                break
        return reports

    def run_cron(self, jobs: Iterable, interval: float, stop_event: threading.Event = _stop, once: bool = False):
        jobs = list(jobs)
        logger.info("Cron started for %d job(s), every %ss", len(jobs), interval)

        while not stop_event.is_set():
            for job in jobs:
                try:
                    self.healthcheck(job)
                except Exception:
                    logger.exception("[%s] Healthcheck failed", job.action)
            if once:
                break
            stop_event.wait(interval)

        logger.info("Cron stopped.")
