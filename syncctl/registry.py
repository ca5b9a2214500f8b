from typing import Dict, Iterator, List

from .jobs import LibrarySync, NonLibrarySync
from .sources import remembered_items
from .sync import BackgroundSync

NON_LIBRARY = "non_library"
LIBRARY = "library"


class JobRegistry:
    """One controller per job kind, built once and passed to whoever needs it."""

    def __init__(self):
        self._jobs: Dict[str, BackgroundSync] = {}

    def register(self, kind: str, job: BackgroundSync) -> BackgroundSync:
        if kind in self._jobs:
            raise ValueError(f"Job kind '{kind}' is already registered.")
        for other in self._jobs.values():
            if other.action == job.action:
                raise ValueError(f"Action '{job.action}' is already used by another job.")
        self._jobs[kind] = job
        return job

    def get(self, kind: str) -> BackgroundSync:
        try:
            return self._jobs[kind]
        except KeyError:
            raise KeyError(f"Unknown job '{kind}'. Known jobs: {', '.join(self.kinds())}")

    def kinds(self) -> List[str]:
        return sorted(self._jobs)

    def __iter__(self) -> Iterator[BackgroundSync]:
        return iter(self._jobs[k] for k in self.kinds())

    def __contains__(self, kind: str) -> bool:
        return kind in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)


def build_registry(store, dispatcher, settings, delegate, paths_source=None, media_source=None) -> JobRegistry:
    """Both sync kinds, reading their items from the CLI snapshots unless given."""
    registry = JobRegistry()
    registry.register(NON_LIBRARY, NonLibrarySync(
        store, dispatcher, settings, delegate,
        paths_source or remembered_items(store, NonLibrarySync.action, []),
    ))
    registry.register(LIBRARY, LibrarySync(
        store, dispatcher, settings, delegate,
        media_source or remembered_items(store, LibrarySync.action, {}),
    ))
    return registry
