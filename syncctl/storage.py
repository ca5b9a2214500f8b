import logging
import shutil
from pathlib import Path, PurePosixPath

from .models import TaskResult

logger = logging.getLogger(__name__)


class DirectoryBucket:
    """Local directory standing in for the remote object store.

    Objects are written under `root` using their relative path as the key,
    so a synced tree mirrors the upload tree.
    """

    def __init__(self, root):
        self.root = Path(root)

    def is_connected(self) -> bool:
        return self.root.is_dir()

    @staticmethod
    def _valid_key(path: str) -> bool:
        if not path:
            return False
        key = PurePosixPath(path)
        return not key.is_absolute() and ".." not in key.parts

    def _copy(self, key: str, fullpath: Path, force: bool) -> TaskResult:
        if not self._valid_key(key):
            return TaskResult.unprocessable(f"Invalid object name: {key!r}")

        source = Path(fullpath)
        if not source.is_file():
            return TaskResult.unprocessable(f"File not found: {source}")

        target = self.root / key
        if target.exists() and not force:
            logger.debug("Object %s already present, skipping copy", key)
            return TaskResult.ok()

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            return TaskResult.fatal(f"Could not write {key}: {e}")
        return TaskResult.ok()

    def sync_file(self, path: str, fullpath, force: bool = False) -> TaskResult:
        return self._copy(path, fullpath, force)

    def sync_media(self, media_id: int, path: str, fullpath, force: bool = False) -> TaskResult:
        if not path:
            return TaskResult.unprocessable(f"Media {media_id} has no file")
        return self._copy(f"media/{path}", fullpath, force)
