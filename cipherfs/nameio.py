"""On-disk helpers for directory IV files and long-name files.

All functions work relative to an open directory file descriptor, which
makes them immune to concurrent renames of the directory and safe against
symlinks in the last path component.
"""

from __future__ import annotations

import errno
import logging
import os
from typing import BinaryIO

from .names import LONG_NAME_SUFFIX, NameTransform
from .pathiv import DIR_IV_LEN

__all__ = [
    "DIR_IV_FILENAME",
    "DIRIV_PERMS",
    "NAME_PERMS",
    "LONG_NAME_READ_LIMIT",
    "read_dir_iv",
    "read_dir_iv_at",
    "write_dir_iv_at",
    "read_long_name_at",
    "delete_long_name_at",
    "write_long_name_at",
]

log = logging.getLogger(__name__)

DIR_IV_FILENAME = "gocryptfs.diriv"

# gocryptfs.diriv and *.name files are created once and never modified.
# They are group- and world-readable so that the encrypted tree can be shared
# by several users and copied by its non-root owner.
DIRIV_PERMS = 0o444
NAME_PERMS = 0o444

# 256 (255 padded to 16) bytes, base64-encoded, take 344 bytes.
LONG_NAME_READ_LIMIT = 344

_ALL_ZERO_DIR_IV = bytes(DIR_IV_LEN)


def _base(path: str) -> str:
    """Last element of ``path``, ignoring trailing slashes."""
    if path == "":
        return "."
    stripped = path.rstrip("/")
    if stripped == "":
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _create_exclusive(dirfd: int, name: str, data: bytes, perms: int, what: str) -> None:
    """Create ``name`` exclusively and write ``data``; remove it again on failure."""
    try:
        fd = os.open(name, os.O_WRONLY | os.O_CREAT | os.O_EXCL, perms, dir_fd=dirfd)
    except FileExistsError:
        # Allowed for renames; the caller decides what to do.
        raise
    except OSError as exc:
        log.warning("%s: open: %s", what, exc)
        raise
    try:
        try:
            _write_all(fd, data)
        finally:
            os.close(fd)
    except OSError as exc:
        if exc.errno != errno.ENOSPC:
            log.warning("%s: write: %s", what, exc)
        try:
            os.unlink(name, dir_fd=dirfd)
        except OSError:
            pass
        raise


def read_dir_iv(stream: BinaryIO) -> bytes:
    """Read and verify a directory IV from an open ``gocryptfs.diriv`` stream.

    Raises ValueError if the content is not exactly 16 bytes or is all zero.
    """
    try:
        # One byte more than needed so that oversized files are detected.
        iv = stream.read(DIR_IV_LEN + 1) or b""
    except OSError as exc:
        raise ValueError(f"read failed: {exc}") from exc
    if len(iv) != DIR_IV_LEN:
        raise ValueError(f"wanted {DIR_IV_LEN} bytes, got {len(iv)}")
    if iv == _ALL_ZERO_DIR_IV:
        raise ValueError("diriv is all-zero")
    return bytes(iv)


def read_dir_iv_at(transform: NameTransform, dirfd: int) -> bytes:
    """Read ``gocryptfs.diriv`` from the directory opened as ``dirfd``.

    With deterministic names an all-zero IV is returned without any I/O.
    """
    if transform.deterministic_names:
        return bytes(DIR_IV_LEN)
    fd = os.open(DIR_IV_FILENAME, os.O_RDONLY | os.O_NOFOLLOW, dir_fd=dirfd)
    with os.fdopen(fd, "rb", buffering=0) as stream:
        return read_dir_iv(stream)


def write_dir_iv_at(dirfd: int) -> bytes:
    """Create a new random ``gocryptfs.diriv`` in the directory ``dirfd``.

    Returns the IV written. An incomplete file is deleted on error.
    """
    iv = os.urandom(DIR_IV_LEN)
    _create_exclusive(dirfd, DIR_IV_FILENAME, iv, DIRIV_PERMS, "write_dir_iv_at")
    return iv


def read_long_name_at(dirfd: int, c_name: str) -> str:
    """Read ``c_name + ".name"`` from the directory opened as ``dirfd``.

    Raises ValueError if the file is empty or larger than the limit.
    """
    name = c_name + LONG_NAME_SUFFIX
    fd = os.open(name, os.O_RDONLY | os.O_NOFOLLOW, dir_fd=dirfd)
    try:
        data = os.pread(fd, LONG_NAME_READ_LIMIT + 1, 0)
    finally:
        os.close(fd)
    if not data:
        raise ValueError("read_long_name_at: empty file")
    if len(data) > LONG_NAME_READ_LIMIT:
        raise ValueError(
            f"read_long_name_at: size={len(data)} > limit={LONG_NAME_READ_LIMIT}"
        )
    return data.decode("utf-8", "surrogateescape")


def delete_long_name_at(dirfd: int, hash_name: str) -> None:
    """Delete ``hash_name + ".name"`` in the directory opened as ``dirfd``."""
    try:
        os.unlink(hash_name + LONG_NAME_SUFFIX, dir_fd=dirfd)
    except OSError as exc:
        log.warning("delete_long_name_at: %s", exc)
        raise


def write_long_name_at(
    transform: NameTransform, dirfd: int, hash_name: str, plain_name: str
) -> None:
    """Encrypt ``plain_name`` and write it into ``hash_name + ".name"``.

    ``plain_name`` may be a path; only its last element is used.
    Raises FileExistsError if the file is already there.
    """
    plain_name = _base(plain_name)
    dir_iv = read_dir_iv_at(transform, dirfd)
    c_name = transform.encrypt_name(plain_name, dir_iv)
    _create_exclusive(
        dirfd,
        hash_name + LONG_NAME_SUFFIX,
        c_name.encode("utf-8", "surrogateescape"),
        NAME_PERMS,
        "write_long_name_at",
    )