"""Derive IVs and file IDs deterministically from encrypted paths."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass

__all__ = ["DIR_IV_LEN", "Purpose", "FileIVs", "derive", "derive_file", "block_iv"]

DIR_IV_LEN = 16

_U64 = (1 << 64) - 1


class Purpose(str, enum.Enum):
    """What a derived value will be used for; mixed into the derivation."""

    DIR_IV = "DIRIV"
    FILE_ID = "FILEID"
    SYMLINK_IV = "SYMLINKIV"
    BLOCK0_IV = "BLOCK0IV"


@dataclass(frozen=True)
class FileIVs:
    """The two values needed to present a file: its ID and the IV of block 0."""

    id: bytes
    block0_iv: bytes


def derive(path: str, purpose: Purpose) -> bytes:
    """Derive a 16-byte value from ``path`` by hashing it with SHA-256."""
    # The null byte cannot occur in a path, so it is a safe separator.
    data = path.encode("utf-8", "surrogateescape") + b"\x00" + Purpose(purpose).value.encode()
    return hashlib.sha256(data).digest()[:DIR_IV_LEN]


def derive_file(path: str) -> FileIVs:
    """Derive both the file ID and the block-0 IV for ``path``."""
    return FileIVs(id=derive(path, Purpose.FILE_ID), block0_iv=derive(path, Purpose.BLOCK0_IV))


def block_iv(block0iv: bytes, block_no: int) -> bytes:
    """Return the IV of block ``block_no``, given the IV of block 0.

    The block number is added to the lower 64 bits (big endian), wrapping
    around on overflow.
    """
    head, low = bytes(block0iv[:8]), block0iv[8:]
    value = (int.from_bytes(low, "big") + block_no) & _U64
    return head + value.to_bytes(len(low), "big")