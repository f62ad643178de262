"""Transactional state stores owned by the registries.

A registry keeps all of its tables in one JSON-compatible dict held by a
store. Mutations happen inside ``transaction()``: the block works on a private
copy and the copy replaces the committed state only when the block exits
cleanly, so a raised error leaves no partial effect.

``lock()`` is reentrant. A registry holds it around a transaction and the
event it records, so no other writer can commit in between.
"""

from __future__ import annotations

import copy
import fcntl
import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

from .storage import ensure_private_dir, ensure_private_file


class StateStore(Protocol):
    def lock(self) -> ContextManager[None]: ...

    def transaction(self) -> ContextManager[dict]: ...

    def snapshot(self) -> ContextManager[dict]: ...


class MemoryStateStore:
    """In-process store serialized by a lock."""

    def __init__(self, initial: Optional[dict] = None):
        self._state: dict = copy.deepcopy(initial) if initial else {}
        self._lock = threading.RLock()

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield

    @contextmanager
    def transaction(self) -> Iterator[dict]:
        with self._lock:
            working = copy.deepcopy(self._state)
            yield working
            self._state = working

    @contextmanager
    def snapshot(self) -> Iterator[dict]:
        """Yield the committed state for reading. Callers must not mutate it."""
        with self._lock:
            yield self._state


class FileStateStore:
    """File-backed store with lock-based concurrency control.

    State is written atomically (temp file + ``os.replace``) so readers in
    other processes never observe a half-written file. Threads of one process
    serialize on an ``RLock``; processes serialize on an ``fcntl`` lock file
    held by the outermost ``lock()``.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        ensure_private_dir(self.path.parent)
        self._lock_path = self.path.parent / f".{self.path.name}.lock"
        ensure_private_file(self._lock_path)
        self._thread_lock = threading.RLock()
        self._depth = 0
        with self.lock():
            if not self.path.exists() or self.path.stat().st_size == 0:
                self._save_state({})

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._thread_lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            with open(self._lock_path, "r+") as lockf:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
                self._depth = 1
                try:
                    yield
                finally:
                    self._depth = 0
                    fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    def _load_state(self) -> dict:
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def _save_state(self, state: dict) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + f".tmp.{os.getpid()}.{threading.get_ident()}")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
        ensure_private_file(self.path)

    @contextmanager
    def transaction(self) -> Iterator[dict]:
        with self.lock():
            state = self._load_state()
            yield state
            self._save_state(state)

    @contextmanager
    def snapshot(self) -> Iterator[dict]:
        with self.lock():
            yield self._load_state()
