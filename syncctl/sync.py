"""
Background sync job controller.

A `BackgroundSync` owns one job action: its queue, its process metadata and
its stop/complete markers, all kept in the option store so that nothing has
to survive in memory between execution windows. Concrete jobs supply the
items and the per-item `task()`.
"""

import logging
import time
import uuid
from typing import Any, Dict, Iterable, Mapping, Optional

from .models import (
    COMPLETED, IDLE, RUNNING, STOPPED, STOPPING,
    END_EMPTY, END_BUDGET, END_FATAL, END_PAUSED, END_STOPPED,
    FATAL, SUCCESS, UNPROCESSABLE,
    HelperWindow, TaskResult, WindowReport,
)
from .queue_store import QueueStore
from .sources import remember_items
from .utils import MINUTE_IN_SECONDS, chunked, now_ts

logger = logging.getLogger(__name__)

STUCK_NOTICE = (
    "This process takes longer than it should. Please, make sure the scheduled "
    "trigger (syncctl cron) is running, or try restarting the process."
)


class BackgroundSync:
    action = "syncctl_bg_sync"
    cron_interval = 5

    def __init__(self, store, dispatcher, settings, clock=now_ts):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock
        self.queue = QueueStore(store, self.action)
        if getattr(settings, "cron_interval", None):
            self.cron_interval = settings.cron_interval

    # ---------- Descriptors ----------
    def get_name(self) -> str:
        raise NotImplementedError

    def get_helper_window(self) -> Optional[HelperWindow]:
        return None

    # ---------- Items ----------
    def get_items(self) -> Iterable[Any]:
        raise NotImplementedError

    def get_total_items(self) -> int:
        return len(list(self.get_items()))

    def get_max_batch_size(self) -> int:
        return self.settings.max_batch_size

    def enqueue(self, items: Iterable[Any]) -> int:
        """Push items in segments of at most max_batch_size. Returns the count."""
        count = 0
        for chunk in chunked(items, self.get_max_batch_size()):
            for item in chunk:
                self.queue.push(item)
            self.queue.save()
            count += len(chunk)
        return count

    def build_queue(self) -> int:
        return self.enqueue(self.get_items())

    def extend_queue(self) -> int:
        """Enqueue more items once the queue runs dry. Returns how many were added."""
        return 0

    def task(self, item) -> TaskResult:
        raise NotImplementedError

    # ---------- Keys ----------
    def get_process_meta_key(self) -> str:
        return f"{self.action}_process_meta"

    def get_stopped_option_key(self) -> str:
        return f"{self.action}_stopped"

    def get_completed_option_key(self) -> str:
        return f"{self.action}_completed"

    def get_last_error_key(self) -> str:
        return f"{self.action}_last_error"

    def get_process_lock_key(self) -> str:
        return f"{self.action}_process_lock"

    def get_start_lock_key(self) -> str:
        return f"{self.action}_start_lock"

    # ---------- Process meta ----------
    def get_process_meta(self, key: Optional[str] = None, default: Any = None):
        meta = self.store.get(self.get_process_meta_key()) or {}
        if key is None:
            return meta
        return meta.get(key, default)

    def save_process_meta(self, values: Mapping[str, Any]):
        meta = self.get_process_meta()
        meta.update(values)
        self.store.update(self.get_process_meta_key(), meta)

    def clear_process_meta(self):
        self.store.delete(self.get_process_meta_key())

    def record_error(self, message: str):
        self.store.update(self.get_last_error_key(), {"message": message, "at": self.clock()})

    def get_last_error(self) -> Optional[Dict[str, Any]]:
        return self.store.get(self.get_last_error_key())

    def log(self, message: str, level: int = logging.INFO):
        logger.log(level, "[%s] %s", self.action, message)

    # ---------- Lifecycle ----------
    def is_stopped(self) -> bool:
        return self.store.get(self.get_stopped_option_key()) is not None

    def is_process_running(self) -> bool:
        if not self.get_process_meta("starttime"):
            return False
        if self.is_stopped():
            return False
        return self.store.get(self.get_completed_option_key()) is None

    def get_state(self) -> str:
        if self.is_stopped():
            if self.store.is_locked(self.get_process_lock_key(), self.clock()):
                return STOPPING
            return STOPPED
        if self.is_process_running():
            return RUNNING
        if self.store.get(self.get_completed_option_key()) is not None:
            return COMPLETED
        return IDLE

    def start(self, items: Optional[Any] = None) -> bool:
        """Build a fresh queue and mark the job running.

        `items`, when given, replaces the remembered item snapshot. It is
        written only after the job is known not to be running.
        """
        start_lock = self.get_start_lock_key()
        locked = False

        try:
            if self.is_process_running():
                return False
            locked = self.store.acquire_lock(start_lock, self.settings.lock_duration, self.clock())
            if not locked or self.is_process_running():
                return False

            # Make sure there is no orphaned data and state
            self.store.delete(self.get_stopped_option_key())
            self.store.delete(self.get_completed_option_key())
            self.store.delete(self.get_last_error_key())
            self.clear_process_meta()
            self.queue.clear()
            if items is not None:
                remember_items(self.store, self.action, items)

            total = self.build_queue()

            # before dispatch: a background window may finish the whole job
            self.save_process_meta({
                "run_id": uuid.uuid4().hex,
                "starttime": self.clock(),
                "total": total,
                "processed": 0,
                "skipped": 0,
            })
            self.log(f"Started with {total} item(s)")

            self.dispatch()
            return True
        except Exception as e:
            self.log(f"Could not start the process due to the error: {e}", logging.ERROR)
            self.record_error(str(e))
            self.stop()
            return False
        finally:
            if locked:
                self.store.release_lock(start_lock)

    def dispatch(self):
        return self.dispatcher.dispatch(self)

    def _summary(self, meta, at_key: str) -> Dict[str, Any]:
        return {
            at_key: self.clock(),
            "total": meta.get("total", 0),
            "processed": meta.get("processed", 0),
            "skipped": meta.get("skipped", 0),
        }

    def stop(self):
        if not self.is_stopped():
            self.store.update(self.get_stopped_option_key(), self._summary(self.get_process_meta(), "stopped_at"))
        self.queue.clear()
        self.clear_process_meta()
        self.log("Stopped")

    def complete(self):
        meta = self.get_process_meta()
        self.queue.clear()
        self.clear_process_meta()
        self.store.update(self.get_completed_option_key(), self._summary(meta, "completed_at"))
        self.log("Complete")

    # ---------- Execution window ----------
    def _run_task(self, item) -> TaskResult:
        try:
            result = self.task(item)
        except Exception as e:
            # unclassified errors stop the job rather than being skipped
            logger.debug("[%s] task(%r) raised", self.action, item, exc_info=True)
            return TaskResult.fatal(str(e) or e.__class__.__name__)
        if result is None:
            return TaskResult.ok()
        return result

    def _record(self, result: TaskResult):
        meta = self.get_process_meta()
        if result.outcome == SUCCESS:
            meta["processed"] = int(meta.get("processed", 0)) + 1
        else:
            meta["skipped"] = int(meta.get("skipped", 0)) + 1
        meta["last_at"] = self.clock()
        self.store.update(self.get_process_meta_key(), meta)

    def current_run(self) -> Optional[str]:
        """Id of the run in progress, or None when the job is not running."""
        if not self.is_process_running():
            return None
        return self.get_process_meta("run_id")

    def handle(self, budget=None, heartbeat=None) -> WindowReport:
        """One execution window.

        The window belongs to the run that was in progress when it began. If
        that run is stopped, or stopped and started again, while an item is
        in flight, the window ends without touching the new run's queue.
        `heartbeat` is called before every item (the dispatcher renews its
        lock there).
        """
        report = WindowReport(self.action)
        started = time.monotonic()
        run_id = self.current_run()

        while True:
            if run_id is None or self.current_run() != run_id:
                report.ended_by = END_STOPPED
                break

            item = self.queue.peek_next()
            if item is None:
                added = self.extend_queue()
                if added:
                    self.save_process_meta({"total": int(self.get_process_meta("total", 0)) + added})
                    continue
                self.complete()
                report.ended_by = END_EMPTY
                break

            if heartbeat is not None:
                heartbeat()

            result = self._run_task(item)

            if self.current_run() != run_id:
                # stop() (and maybe a new start()) came in while the item ran
                report.ended_by = END_STOPPED
                break

            if result.outcome == FATAL:
                self.log(f"Stopped due to error - {result.message}", logging.ERROR)
                self.record_error(result.message or "")
                self.stop()
                report.count(FATAL)
                report.ended_by = END_FATAL
                break

            if result.outcome == UNPROCESSABLE:
                self.log(result.message or f"Skipped {item!r}", logging.WARNING)

            self.queue.remove_next()
            self._record(result)
            report.count(result.outcome)

            if result.pause:
                report.ended_by = END_PAUSED
                break
            if budget is not None and budget.exceeded(started, report.handled):
                report.ended_by = END_BUDGET
                break

        return report

    # ---------- Operator views ----------
    def get_process_notice(self) -> Optional[str]:
        last = int(self.get_process_meta("last_at") or 0)
        if not last:
            last = int(self.get_process_meta("starttime") or 0)
            if not last:
                return None

        if int(self.get_process_meta("processed") or 0) > 0:
            return None

        if not self.cron_interval:
            return None

        waiting = self.clock() - last
        if waiting < MINUTE_IN_SECONDS * self.cron_interval:
            return None

        return STUCK_NOTICE

    def get_progress(self) -> Dict[str, Any]:
        meta = self.get_process_meta()
        return {
            "action": self.action,
            "name": self.get_name(),
            "state": self.get_state(),
            "total": meta.get("total", 0),
            "processed": meta.get("processed", 0),
            "skipped": meta.get("skipped", 0),
            "queued": self.queue.size(),
            "starttime": meta.get("starttime"),
            "last_at": meta.get("last_at"),
            "completed": self.store.get(self.get_completed_option_key()),
            "stopped": self.store.get(self.get_stopped_option_key()),
            "last_error": self.get_last_error(),
            "notice": self.get_process_notice(),
        }
