"""Translate (device, tag, inode) tuples into unique 64-bit inode numbers.

Format of the returned inode numbers::

    [spill bit = 0][15 bit namespace id][48 bit passthru inode number]
    [spill bit = 1][63 bit spill inode number                        ]

Each (device, tag) pair gets a namespace id assigned, and the original inode
number is passed through in the lower 48 bits. If the namespace ids run out,
or the original inode number does not fit into 48 bits, the whole tuple is
recorded in the spill map and the spill bit is set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

__all__ = [
    "MAX_NAMESPACE_ID",
    "MAX_PASSTHRU_INO",
    "MAX_SPILL_INO",
    "SPILL_BIT",
    "QIno",
    "InoMap",
    "qino_from_stat",
]

log = logging.getLogger(__name__)

MAX_NAMESPACE_ID = (1 << 15) - 1
MAX_PASSTHRU_INO = (1 << 48) - 1
MAX_SPILL_INO = (1 << 63) - 1
SPILL_BIT = 1 << 63

_spill_warned = threading.Event()


@dataclass(frozen=True)
class QIno:
    """Qualified inode number: identifies a backing file uniquely.

    ``tag`` extends the device number; it distinguishes virtual files that
    share the device and inode number of a real file.
    """

    dev: int = 0
    tag: int = 0
    ino: int = 0

    @property
    def namespace(self) -> tuple[int, int]:
        return (self.dev, self.tag)


def qino_from_stat(st: Any) -> QIno:
    """Build a QIno from an object with ``st_dev`` and ``st_ino`` attributes."""
    return QIno(dev=int(st.st_dev), tag=0, ino=int(st.st_ino))


class InoMap:
    """Thread-safe mapping of qualified inode numbers to unique inode numbers.

    Inode numbers on ``root_dev`` are passed through unchanged. With
    ``root_dev`` zero, the first translated device takes that role.
    """

    def __init__(self, root_dev: int = 0) -> None:
        self._lock = threading.Lock()
        self._namespace_map: dict[tuple[int, int], int] = {}
        self._namespace_next = 0
        self._spill_map: dict[QIno, int] = {}
        self._spill_next = 0
        if root_dev > 0:
            self._namespace_map[(root_dev, 0)] = 0
            self._namespace_next = 1

    def _spill(self, qino: QIno) -> int:
        if not _spill_warned.is_set():
            _spill_warned.set()
            log.warning("InoMap: opening spill map for %r", qino)
        found = self._spill_map.get(qino)
        if found is not None:
            return found | SPILL_BIT
        if self._spill_next >= MAX_SPILL_INO:
            raise OverflowError(f"spill map overflow: next = {self._spill_next:#x}")
        out = self._spill_next
        self._spill_next += 1
        self._spill_map[qino] = out
        return out | SPILL_BIT

    def translate(self, qino: QIno) -> int:
        """Return the unique inode number for ``qino``."""
        with self._lock:
            if qino.ino > MAX_PASSTHRU_INO:
                return self._spill(qino)
            ns = self._namespace_map.get(qino.namespace)
            if ns is not None:
                return (ns << 48) | qino.ino
            if self._namespace_next >= MAX_NAMESPACE_ID:
                return self._spill(qino)
            ns = self._namespace_next
            self._namespace_next += 1
            self._namespace_map[qino.namespace] = ns
            return (ns << 48) | qino.ino

    def translate_stat(self, st: Any) -> int:
        """Return the unique inode number for the (device, inode) pair in ``st``."""
        return self.translate(qino_from_stat(st))