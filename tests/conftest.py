import pytest

from syncctl.config import Settings
from syncctl.db import init_db
from syncctl.dispatcher import Dispatcher
from syncctl.models import TaskResult
from syncctl.repository import OptionStore
from syncctl.sync import BackgroundSync
from syncctl.utils import now_ts


class Clock:
    """Settable stand-in for now_ts()."""

    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ListSync(BackgroundSync):
    """Job over a fixed list; per-item outcomes can be scripted.

    An outcome may be a TaskResult, an exception instance to raise, or a
    zero-argument callable returning a TaskResult.
    """

    action = "test_list_sync"

    def __init__(self, store, dispatcher, settings, items, outcomes=None, clock=None):
        super().__init__(store, dispatcher, settings, clock or now_ts)
        self.items = list(items)
        self.outcomes = dict(outcomes or {})
        self.seen = []

    def get_name(self):
        return "Test list"

    def get_items(self):
        return self.items

    def task(self, item):
        self.seen.append(item)
        outcome = self.outcomes.get(item)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome()
        return outcome or TaskResult.ok()


class FakeBucket:
    """Delegate recording every call; results keyed by path or media id."""

    def __init__(self, connected=True, results=None):
        self.connected = connected
        self.results = dict(results or {})
        self.calls = []

    def is_connected(self):
        return self.connected

    def sync_file(self, path, fullpath, force=False):
        self.calls.append((path, fullpath, force))
        return self.results.get(path, TaskResult.ok())

    def sync_media(self, media_id, path, fullpath, force=False):
        self.calls.append(media_id)
        return self.results.get(media_id, TaskResult.ok())


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "sync.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return OptionStore(db_path)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        max_batch_size=2,
        cron_interval=5,
        time_limit=0,
        item_limit=0,
        memory_limit_mb=0,
        lock_duration=60,
        upload_dir=tmp_path / "uploads",
        bucket_dir=tmp_path / "bucket",
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def dispatcher(store, settings):
    return Dispatcher(store, settings, background=False)


@pytest.fixture
def make_job(store, dispatcher, settings, clock):
    def _make(items, outcomes=None, cls=ListSync, dispatcher=dispatcher, settings=settings):
        return cls(store, dispatcher, settings, items, outcomes, clock=clock)
    return _make


@pytest.fixture
def fake_bucket():
    return FakeBucket()


@pytest.fixture
def list_sync_cls():
    return ListSync
