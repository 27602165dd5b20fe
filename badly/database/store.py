"""
Crash-safe JSON array file store with a mirrored backup and an in-process cache.

Every write replaces the whole file: the payload goes to a temp file in the same
directory, is fsynced, then renamed over the target, so a reader never sees a
partially written file. The same sequence is repeated for ``<file>.bak``.
"""

import copy
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)


class StorageCorruptionError(RuntimeError):
    """Raised when neither the primary file nor its backup holds a valid JSON array."""


def get_backup_path(file_path: Union[str, Path]) -> Path:
    """Return the sibling backup path (``<file>.bak``) for a data file."""
    path = Path(file_path)
    return path.with_name(f"{path.name}.bak")


def atomic_write_file(target_path: Path, contents: str) -> None:
    """
    Write ``contents`` to ``target_path`` via temp file + fsync + rename.

    Args:
        target_path: Destination file
        contents: Text to write (UTF-8)

    Raises:
        OSError: If the temp file cannot be written or renamed. The target is
            left untouched in that case.
    """
    directory = target_path.parent
    tmp_path = directory / f".{target_path.name}.tmp-{os.getpid()}-{int(time.time() * 1000)}"

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
            tmp_file.write(contents)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        os.replace(tmp_path, target_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise

    # Directory fsync makes the rename durable; not supported everywhere
    try:
        dir_fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except OSError:
        pass


class AtomicFileStore:
    """One entity collection persisted as a JSON array file."""

    def __init__(self, file_path: Union[str, Path], seed: Optional[List[Any]] = None):
        self.file_path = Path(file_path)
        self.backup_path = get_backup_path(self.file_path)
        self._seed = list(seed) if seed is not None else []
        self._cache: Optional[List[Any]] = None
        # Held by callers for the whole read-modify-write of this collection
        self.lock = threading.RLock()
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return self.file_path.name

    def read(self) -> List[Any]:
        """
        Return the collection, from cache when available.

        The returned list is a copy: mutating it never alters the cache.

        Raises:
            StorageCorruptionError: If the primary file is invalid and no valid
                backup exists
        """
        with self.lock:
            if self._cache is not None:
                return copy.deepcopy(self._cache)

            if not self.file_path.exists():
                seed = copy.deepcopy(self._seed)
                self.write(seed)
                return copy.deepcopy(seed)

            try:
                items = self._load(self.file_path)
            except (OSError, ValueError) as e:
                logger.warning(f"{self.name} is invalid ({e}); trying {self.backup_path.name}")
                items = self._recover_from_backup()

            self._cache = items
            return copy.deepcopy(items)

    def write(self, items: List[Any]) -> None:
        """
        Persist the full collection to the primary file, then to the backup.

        The cache is updated only after the primary write succeeded. A failed
        backup write is logged and does not fail the call.
        """
        serialized = json.dumps(items, indent=2, ensure_ascii=False) + "\n"
        with self.lock:
            atomic_write_file(self.file_path, serialized)

            try:
                atomic_write_file(self.backup_path, serialized)
            except OSError as e:
                logger.error(f"Failed to write {self.backup_path.name}: {e}")

            self._cache = copy.deepcopy(items)

    def invalidate(self) -> None:
        """Drop the cached collection so the next read goes to disk."""
        with self.lock:
            self._cache = None

    def _load(self, path: Path) -> List[Any]:
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return copy.deepcopy(self._seed)
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError(f"expected a JSON array in {path.name}")
        return parsed

    def _recover_from_backup(self) -> List[Any]:
        if not self.backup_path.exists():
            raise StorageCorruptionError(
                f"Invalid content in {self.name} and no backup available"
            )

        try:
            items = self._load(self.backup_path)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read backup {self.backup_path.name}: {e}")
            raise StorageCorruptionError(
                f"Invalid content in {self.name} and its backup"
            ) from e

        logger.warning(f"{self.name} restored from {self.backup_path.name}")
        try:
            atomic_write_file(
                self.file_path, json.dumps(items, indent=2, ensure_ascii=False) + "\n"
            )
        except OSError as e:
            logger.error(f"Failed to restore {self.name} from backup: {e}")
        return items
