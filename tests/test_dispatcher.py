import dataclasses
import threading
import time
from types import SimpleNamespace

import pytest

from syncctl import dispatcher as dispatcher_module
from syncctl.dispatcher import Dispatcher, WindowBudget
from syncctl.models import COMPLETED, END_BUDGET, END_EMPTY, RUNNING, STOPPED


def test_run_window_ignores_jobs_that_are_not_running(make_job, dispatcher):
    job = make_job(["a"])
    assert dispatcher.run_window(job) is None
    assert job.seen == []


def test_dropped_trigger_leaves_the_job_waiting(make_job, dispatcher, clock):
    job = make_job(["a", "b"])
    job.start()

    # nobody fired a window: nothing happens, and the operator is told so
    clock.advance(10 * 60)
    assert job.seen == []
    assert job.get_state() == RUNNING
    assert job.get_process_notice()

    report = dispatcher.run_window(job)
    assert report.ended_by == END_EMPTY
    assert job.seen == ["a", "b"]
    assert job.get_state() == COMPLETED


def test_overlapping_windows_are_refused(make_job, dispatcher, store, clock):
    job = make_job(["a"])
    job.start()
    store.acquire_lock(job.get_process_lock_key(), 60, clock())

    assert dispatcher.run_window(job) is None
    assert job.seen == []

    # a crashed window's lock expires and the next trigger takes over
    clock.advance(61)
    assert dispatcher.run_window(job).ended_by == END_EMPTY
    assert job.seen == ["a"]
    assert not store.is_locked(job.get_process_lock_key(), clock())


def test_windows_resume_where_the_budget_stopped(make_job, store, settings):
    limited = Dispatcher(store, dataclasses.replace(settings, item_limit=2), background=False)
    job = make_job(["a/b.jpg", "c/d.png", "e/f.pdf"], dispatcher=limited)
    job.start()

    first = limited.run_window(job)
    assert first.ended_by == END_BUDGET
    assert job.seen == ["a/b.jpg", "c/d.png"]

    second = limited.run_window(job)
    assert second.ended_by == END_EMPTY
    assert second.handled == 1
    assert job.seen == ["a/b.jpg", "c/d.png", "e/f.pdf"]


def test_errors_never_escape_the_window(make_job, dispatcher, store, list_sync_cls):
    class Exploding(list_sync_cls):
        def handle(self, budget=None, heartbeat=None):
            raise RuntimeError("option store unavailable")

    job = make_job(["a"], cls=Exploding)
    job.start()

    assert dispatcher.run_window(job) is None
    assert job.get_state() == STOPPED
    assert job.get_last_error()["message"] == "option store unavailable"
    assert not store.is_locked(job.get_process_lock_key(), job.clock())


def test_background_dispatch_runs_the_job(make_job, store, settings):
    background = Dispatcher(store, settings, background=True)
    job = make_job(["a", "b", "c"], dispatcher=background)

    assert job.start() is True

    deadline = time.monotonic() + 10
    while job.get_state() != COMPLETED and time.monotonic() < deadline:
        time.sleep(0.05)

    assert job.get_state() == COMPLETED
    assert job.seen == ["a", "b", "c"]


def test_second_dispatch_during_a_window_does_not_double_process(make_job, store, settings):
    background = Dispatcher(store, settings, background=True)
    job = make_job(["a"], dispatcher=background)
    entered = threading.Event()
    release = threading.Event()
    job.outcomes["a"] = lambda: (entered.set(), release.wait(5), None)[2]
    job.start()
    assert entered.wait(5)

    thread = background.dispatch(job)
    thread.join(5)
    release.set()

    deadline = time.monotonic() + 10
    while job.get_state() != COMPLETED and time.monotonic() < deadline:
        time.sleep(0.05)

    assert job.seen == ["a"]
    assert job.get_state() == COMPLETED


def test_drain_runs_windows_until_done(make_job, store, settings):
    limited = Dispatcher(store, dataclasses.replace(settings, item_limit=1), background=False)
    job = make_job([1, 2, 3], dispatcher=limited)
    job.start()

    reports = limited.drain(job)

    assert [r.ended_by for r in reports] == [END_BUDGET, END_BUDGET, END_BUDGET, END_EMPTY]
    assert job.seen == [1, 2, 3]


def test_healthcheck_runs_only_running_jobs(make_job, dispatcher):
    job = make_job(["a"])
    assert dispatcher.healthcheck(job) is None

    job.start()
    assert dispatcher.healthcheck(job).ended_by == END_EMPTY


def test_cron_tick_survives_a_broken_job(make_job, dispatcher, list_sync_cls):
    class Broken(list_sync_cls):
        action = "test_broken_sync"

        def is_process_running(self):
            raise RuntimeError("boom")

    broken = make_job(["x"], cls=Broken)
    healthy = make_job(["a", "b"])
    healthy.start()

    dispatcher.run_cron([broken, healthy], interval=0, stop_event=threading.Event(), once=True)

    assert healthy.get_state() == COMPLETED


def test_cron_loop_exits_when_stop_is_set(make_job, dispatcher):
    stop = threading.Event()
    stop.set()
    job = make_job(["a"])
    job.start()

    dispatcher.run_cron([job], interval=0, stop_event=stop)

    assert job.seen == []


def test_budget_item_and_time_limits():
    assert WindowBudget(time_limit=0, item_limit=2).exceeded(time.monotonic(), 2)
    assert not WindowBudget(time_limit=0, item_limit=0).exceeded(time.monotonic() - 3600, 10_000)
    assert WindowBudget(time_limit=20).exceeded(time.monotonic() - 30, 1)
    assert not WindowBudget(time_limit=20).exceeded(time.monotonic(), 1)


@pytest.mark.parametrize("rss_mb,expected", [(100, False), (240, True)])
def test_budget_memory_limit(monkeypatch, rss_mb, expected):
    fake = SimpleNamespace(memory_info=lambda: SimpleNamespace(rss=rss_mb * 1024 * 1024))
    monkeypatch.setattr(dispatcher_module.psutil, "Process", lambda: fake)

    budget = WindowBudget(time_limit=0, memory_limit_mb=256)
    assert budget.memory_exceeded() is expected
    assert WindowBudget(time_limit=0, memory_limit_mb=0).memory_exceeded() is False


def test_lock_is_renewed_before_every_item(make_job, dispatcher, store, clock):
    job = make_job(["a", "b"])
    lock_key = job.get_process_lock_key()
    held = []

    def slow():
        clock.advance(50)
        held.append(store.is_locked(lock_key, clock()))
        return None

    job.outcomes["a"] = slow
    job.outcomes["b"] = slow
    job.start()

    assert dispatcher.run_window(job).ended_by == END_EMPTY
    # 100s of work under a 60s lock: still held while "b" ran
    assert held == [True, True]
    assert not store.is_locked(lock_key, clock())
