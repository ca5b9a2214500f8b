import logging
from typing import Any, Callable, Dict, Iterable, List

from .models import SUCCESS, UNPROCESSABLE, HelperWindow, TaskResult
from .progress import (
    sync_get_non_processed_ids,
    sync_maybe_fix_failed_item,
    sync_store_current_progress,
    sync_store_failed_item,
)
from .sync import BackgroundSync
from .utils import Timer, now_ts, unique_non_empty

NOT_CONNECTED = "Not connected to the remote store"


class NonLibrarySync(BackgroundSync):
    """Files that live outside the media library, addressed by relative path."""

    cron_interval = 5
    action = "syncctl_bg_non_library_sync"

    def __init__(self, store, dispatcher, settings, delegate, source: Callable[[], Iterable[str]], clock=now_ts):
        super().__init__(store, dispatcher, settings, clock)
        self.delegate = delegate
        self.source = source

    def get_name(self) -> str:
        return "Compatibility and Custom Folders"

    def get_helper_window(self) -> HelperWindow:
        return HelperWindow(
            "What are Compatibility and Custom Folders?",
            "All kind of files that were created by themes and plugins in custom folders "
            "out of standard Media Library, and that have Compatibility Support. "
            "Limit and Sorting is not supported.",
        )

    def get_items(self) -> List[str]:
        return unique_non_empty(self.source() or [])

    def get_total_items(self) -> int:
        return len(self.get_items())

    def task(self, item) -> TaskResult:
        timer = Timer()

        if self.delegate.is_connected() is not True:
            return TaskResult.fatal(NOT_CONNECTED)

        file_path = str(item).strip("/")
        fullsizepath = self.settings.upload_dir / file_path

        result = self.delegate.sync_file(file_path, fullsizepath, force=True)
        if result.outcome == SUCCESS:
            self.log(f"{file_path} was successfully synchronised in {timer.stop()} seconds.")
        return result

    def extend_queue(self) -> int:
        # Not needed for this kind of sync
        return 0


class LibrarySync(BackgroundSync):
    """Media library items by numeric id, newest first, resumable by checkpoint."""

    action = "syncctl_bg_library_sync"

    def __init__(
        self,
        store,
        dispatcher,
        settings,
        delegate,
        source: Callable[[], Dict[Any, str]],
        mode: str = "images",
        clock=now_ts,
    ):
        super().__init__(store, dispatcher, settings, clock)
        self.delegate = delegate
        self.source = source
        self.mode = mode
        self._continue = False
        self._start_from = 0
        self._media = None

    def get_name(self) -> str:
        return "Media Library"

    def get_helper_window(self) -> HelperWindow:
        return HelperWindow(
            "What are Media Library objects?",
            "All files uploaded to the Media Library, synchronised from the newest id "
            "down. An interrupted run can be continued from the last synchronised id.",
        )

    def get_media(self) -> Dict[int, str]:
        # ids come back as strings once the manifest has been through JSON
        return {int(k): v for k, v in (self.source() or {}).items()}

    def get_items(self) -> List[int]:
        return sorted(self.get_media(), reverse=True)

    def get_total_items(self) -> int:
        return len(self.get_media())

    def start(self, continue_: bool = False, start_from: int = 0, items=None) -> bool:
        self._continue = continue_
        self._start_from = start_from
        try:
            return super().start(items)
        finally:
            self._continue = False
            self._start_from = 0

    def build_queue(self) -> int:
        ids = sync_get_non_processed_ids(
            self.store, self.mode, self.get_items(), self._continue, self._start_from
        )
        if self._continue:
            self.log(f"Continuing with {len(ids)} remaining item(s)")
        return self.enqueue(ids)

    def handle(self, budget=None, heartbeat=None):
        # one snapshot read per window, not per item
        self._media = self.get_media()
        try:
            return super().handle(budget, heartbeat)
        finally:
            self._media = None

    def task(self, item) -> TaskResult:
        timer = Timer()

        if self.delegate.is_connected() is not True:
            return TaskResult.fatal(NOT_CONNECTED)

        media_id = int(item)
        media = self._media if self._media is not None else self.get_media()
        path = media.get(media_id)
        if path is None:
            result = TaskResult.unprocessable(f"Media {media_id} no longer exists")
        else:
            path = path.strip("/")
            result = self.delegate.sync_media(media_id, path, self.settings.upload_dir / path, force=True)

        if result.outcome == SUCCESS:
            sync_maybe_fix_failed_item(self.store, self.mode, media_id)
            sync_store_current_progress(self.store, self.mode, media_id)
            self.log(f"{path} (ID {media_id}) was successfully synchronised in {timer.stop()} seconds.")
        elif result.outcome == UNPROCESSABLE:
            sync_store_failed_item(self.store, media_id, self.mode)
            sync_store_current_progress(self.store, self.mode, media_id)
            self.log(f"Media {media_id} recorded as failed", logging.DEBUG)
        return result
