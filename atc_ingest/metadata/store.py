"""
One-file-per-key persistent store backing the sensor name cache.
Handles atomic writes under file locking and a small mtime-validated read cache.
"""

import fcntl
import os
import tempfile
import time
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Tuple


class StoreError(Exception):
    """Base exception for key-value store operations."""
    pass


class KeyNotFoundError(StoreError):
    """The requested key does not exist."""
    pass


class FileKeyValueStore:
    """
    Key-value store keeping each value in its own file under ``base_path``.

    Reads are served from an in-memory cache of at most ``cache_size_max``
    bytes; a cached value is only used while the file's modification time is
    unchanged, so edits made by an operator are picked up without a restart.
    """

    LOCK_FILE = ".lock"

    def __init__(self, base_path: Path, cache_size_max: int = 100 * 1024, lock_timeout: float = 5.0):
        self.base_path = Path(base_path)
        self.cache_size_max = cache_size_max
        self.lock_timeout = lock_timeout
        self._cache: "OrderedDict[str, Tuple[int, bytes]]" = OrderedDict()
        self._cache_size = 0

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith('.') or '/' in key or '\\' in key or '\0' in key:
            raise StoreError(f"Invalid key: {key!r}")
        return self.base_path / key

    @contextmanager
    def _file_lock(self):
        """Hold an exclusive lock on the store's lock file."""
        self.base_path.mkdir(parents=True, exist_ok=True)
        lock_acquired = False
        with open(self.base_path / self.LOCK_FILE, 'a') as lock_handle:
            start_time = time.time()
            while time.time() - start_time < self.lock_timeout:
                try:
                    fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except OSError:
                    time.sleep(0.05)

            if not lock_acquired:
                raise StoreError(f"Could not acquire lock for {self.base_path} within {self.lock_timeout} seconds")

            try:
                yield
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def _cache_put(self, key: str, mtime: int, value: bytes):
        self._cache_drop(key)
        if len(value) > self.cache_size_max:
            return
        self._cache[key] = (mtime, value)
        self._cache_size += len(value)
        while self._cache_size > self.cache_size_max:
            _, (_, evicted) = self._cache.popitem(last=False)
            self._cache_size -= len(evicted)

    def _cache_drop(self, key: str):
        entry = self._cache.pop(key, None)
        if entry is not None:
            self._cache_size -= len(entry[1])

    def read(self, key: str) -> bytes:
        """
        Read the value stored under ``key``.

        Raises:
            KeyNotFoundError: If the key does not exist
            StoreError: If the file cannot be read
        """
        path = self._path_for(key)
        try:
            mtime = path.stat().st_mtime_ns
        except FileNotFoundError:
            self._cache_drop(key)
            raise KeyNotFoundError(f"Key not found: {key}")
        except OSError as e:
            raise StoreError(f"Failed to stat {path}: {e}")

        cached = self._cache.get(key)
        if cached is not None and cached[0] == mtime:
            self._cache.move_to_end(key)
            return cached[1]

        try:
            value = path.read_bytes()
        except FileNotFoundError:
            self._cache_drop(key)
            raise KeyNotFoundError(f"Key not found: {key}")
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}")

        self._cache_put(key, mtime, value)
        return value

    def write(self, key: str, value: bytes):
        """
        Atomically store ``value`` under ``key``.

        Raises:
            StoreError: If the value cannot be written
        """
        path = self._path_for(key)
        try:
            with self._file_lock():
                fd, temp_name = tempfile.mkstemp(dir=self.base_path, prefix=".tmp-")
                try:
                    with os.fdopen(fd, 'wb') as f:
                        f.write(value)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(temp_name, path)
                except BaseException:
                    if os.path.exists(temp_name):
                        os.unlink(temp_name)
                    raise
            self._cache_put(key, path.stat().st_mtime_ns, bytes(value))
        except StoreError:
            raise
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}")

    def keys(self) -> Iterator[str]:
        """Iterate over stored keys in sorted order."""
        if not self.base_path.exists():
            return
        for path in sorted(self.base_path.iterdir()):
            if path.is_file() and not path.name.startswith('.'):
                yield path.name
