"""Table of currently opened files, keyed by qualified inode number.

It stores the current file ID and serialises writes to each file.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from .inomap import QIno

__all__ = ["ContentLock", "Entry", "OpenFileTable"]


class ContentLock:
    """A readers-writer lock that reports each write acquisition.

    Waiting writers take precedence over new readers.
    """

    def __init__(self, on_write: Callable[[], None] | None = None) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0
        self._on_write = on_write

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Hold the lock exclusively for the duration of the block."""
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        if self._on_write is not None:
            self._on_write()
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Hold the lock shared for the duration of the block."""
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()


@dataclass(eq=False)
class Entry:
    """An entry in the open file table.

    ``id`` must only be accessed while holding ``id_lock``, unless the
    caller holds ``content_lock`` exclusively.
    """

    ref_count: int = 0
    content_lock: ContentLock = field(default_factory=ContentLock)
    id: bytes | None = None
    id_lock: threading.Lock = field(default_factory=threading.Lock)


class OpenFileTable:
    """Reference-counted table of open files."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[QIno, Entry] = {}
        self._count_lock = threading.Lock()
        self._write_op_count = 0

    def _count_write(self) -> None:
        with self._count_lock:
            self._write_op_count += 1

    def register(self, qino: QIno) -> Entry:
        """Return the entry for ``qino``, creating it if needed, and take a reference."""
        with self._lock:
            entry = self._entries.get(qino)
            if entry is None:
                entry = Entry(content_lock=ContentLock(self._count_write))
                self._entries[qino] = entry
            entry.ref_count += 1
            return entry

    def unregister(self, qino: QIno) -> None:
        """Drop a reference; the entry is removed when none are left.

        Raises KeyError if ``qino`` is not registered.
        """
        with self._lock:
            entry = self._entries[qino]
            entry.ref_count -= 1
            if entry.ref_count == 0:
                del self._entries[qino]

    def write_op_count(self) -> int:
        """Number of exclusive content-lock acquisitions so far."""
        with self._count_lock:
            return self._write_op_count

    def count_open_files(self) -> int:
        """Number of entries currently in the table."""
        with self._lock:
            return len(self._entries)