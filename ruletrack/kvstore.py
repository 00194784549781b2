"""JSON key-value persistence gateway.

Each key is one JSON document under a directory. Writes are atomic.
``lock(key)`` serialises read-modify-write cycles on a key: threads share one
re-entrant lock per (directory, key), and the outermost holder also takes an
``flock`` on ``.<key>.lock`` so separate processes wait for each other too.
"""

from __future__ import annotations

import fcntl
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ruletrack.fileio import read_json, write_json_atomic


_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class _KeyLock:
    def __init__(self, path: Path):
        self.path = path
        self.thread_lock = threading.RLock()
        self.depth = 0
        self.fd: int | None = None

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self.thread_lock:
            if self.depth == 0:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                except OSError:
                    os.close(fd)
                    raise
                self.fd = fd
            self.depth += 1
            try:
                yield
            finally:
                self.depth -= 1
                if self.depth == 0 and self.fd is not None:
                    fcntl.flock(self.fd, fcntl.LOCK_UN)
                    os.close(self.fd)
                    self.fd = None


_registry_guard = threading.Lock()
_registry: dict[tuple[str, str], _KeyLock] = {}


def _key_lock(directory: Path, key: str) -> _KeyLock:
    """Process-wide lock for a key, shared by every store on the same directory."""
    ident = (str(directory.resolve()), key)
    with _registry_guard:
        lock = _registry.get(ident)
        if lock is None:
            lock = _registry[ident] = _KeyLock(directory / f".{key}.lock")
        return lock


class JsonKeyValueStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any:
        """Stored JSON value, or None when the key is absent."""
        return read_json(self._path(key))

    def set(self, key: str, value: Any) -> None:
        write_json_atomic(self._path(key), value)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the key's lock for a read-modify-write cycle. Re-entrant per thread."""
        self._path(key)
        with _key_lock(self.directory, key).hold():
            yield
