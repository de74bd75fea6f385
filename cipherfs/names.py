"""Encryption and decryption of file names and extended attribute names.

Failures are raised as ``OSError`` carrying the errno a filesystem would
report (``EBADMSG``, ``ENAMETOOLONG``, ``ENOENT``). Cipher names that are not
valid base64 raise ``binascii.Error``.
"""

from __future__ import annotations

import base64
import binascii
import enum
import errno
import fnmatch
import hashlib
import logging
import os
import posixpath
import re
from typing import Iterable

from .eme import EMECipher

__all__ = [
    "NAME_MAX",
    "AES_BLOCK_SIZE",
    "BADNAME_SUFFIX",
    "LONG_NAME_SUFFIX",
    "LONG_NAME_PREFIX",
    "XATTR_NAME_IV",
    "LongNameType",
    "NameTransform",
    "pad16",
    "unpad16",
    "is_valid_name",
    "is_valid_xattr_name",
    "name_type",
    "is_long_content",
    "remove_long_name_suffix",
    "dir_name",
]

log = logging.getLogger(__name__)

NAME_MAX = 255
AES_BLOCK_SIZE = 16
BADNAME_SUFFIX = " GOCRYPTFS_BAD_NAME"
LONG_NAME_SUFFIX = ".name"
LONG_NAME_PREFIX = "gocryptfs.longname."
# xattr names are encrypted like file names, but with a fixed IV.
XATTR_NAME_IV = b"xattr_name_iv_xx"

_UNLIMITED = 2**31 - 1
_B64_SHAPE = re.compile(r"[A-Za-z0-9_-]*={0,2}")


def _to_bytes(name: str | bytes) -> bytes:
    if isinstance(name, str):
        return name.encode("utf-8", "surrogateescape")
    return bytes(name)


def _to_str(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def _os_error(code: int, detail: str = "") -> OSError:
    message = os.strerror(code)
    if detail:
        message = f"{message}: {detail}"
    return OSError(code, message)


def pad16(data: bytes) -> bytes:
    """Pad ``data`` to a multiple of 16 bytes with PKCS#7 padding."""
    if not data:
        raise ValueError("padding zero-length data makes no sense")
    pad_len = AES_BLOCK_SIZE - len(data) % AES_BLOCK_SIZE
    return bytes(data) + bytes([pad_len]) * pad_len


def unpad16(padded: bytes) -> bytes:
    """Remove PKCS#7 padding; raise ValueError if it is malformed."""
    old_len = len(padded)
    if old_len == 0:
        raise ValueError("empty input")
    if old_len % AES_BLOCK_SIZE:
        raise ValueError("unaligned size")
    pad_len = padded[-1]
    if pad_len == 0:
        raise ValueError("padding cannot be zero-length")
    if pad_len > AES_BLOCK_SIZE:
        raise ValueError(f"padding too long, pad_len={pad_len} > 16")
    if pad_len >= old_len:
        raise ValueError(f"padding too long, old_len={old_len} >= pad_len={pad_len}")
    if any(b != pad_len for b in padded[old_len - pad_len:]):
        raise ValueError("invalid padding byte")
    return bytes(padded[: old_len - pad_len])


def _name_problem(name: str | bytes) -> str | None:
    raw = _to_bytes(name)
    if not raw:
        return "empty input"
    if len(raw) > NAME_MAX:
        return "too long"
    if b"\x00" in raw or b"/" in raw:
        return "contains forbidden bytes"
    if raw in (b".", b".."):
        return ". and .. are forbidden names"
    return None


def is_valid_name(name: str | bytes) -> bool:
    """True if ``name`` can be the name of a normal file."""
    return _name_problem(name) is None


def _xattr_name_problem(name: str | bytes) -> str | None:
    raw = _to_bytes(name)
    if not raw:
        return "empty input"
    if b"\x00" in raw:
        return "contains forbidden null byte"
    return None


def is_valid_xattr_name(name: str | bytes) -> bool:
    """True if ``name`` can be an extended attribute name."""
    return _xattr_name_problem(name) is None


class LongNameType(enum.IntEnum):
    """Kinds of cipher names with respect to long-name hashing."""

    CONTENT = 0  # gocryptfs.longname.[sha256]
    FILENAME = 1  # gocryptfs.longname.[sha256].name
    NONE = 2  # a normal cipher name


def name_type(c_name: str) -> LongNameType:
    """Classify ``c_name``; does no I/O."""
    if not c_name.startswith(LONG_NAME_PREFIX):
        return LongNameType.NONE
    if c_name.endswith(LONG_NAME_SUFFIX):
        return LongNameType.FILENAME
    return LongNameType.CONTENT


def is_long_content(c_name: str) -> bool:
    """True if ``c_name`` is the content file of a long name."""
    return name_type(c_name) is LongNameType.CONTENT


def remove_long_name_suffix(c_name: str) -> str:
    """Strip the ``.name`` suffix length from ``c_name`` without checking it."""
    if len(c_name) < len(LONG_NAME_SUFFIX):
        raise ValueError(f"{c_name!r} is shorter than the suffix")
    return c_name[: len(c_name) - len(LONG_NAME_SUFFIX)]


def dir_name(path: str) -> str:
    """Like a cleaned dirname, but return "" instead of "."."""
    d = posixpath.normpath(posixpath.dirname(path) or ".")
    if d.startswith("//"):
        d = "/" + d.lstrip("/")
    return "" if d == "." else d


class NameTransform:
    """Encrypts and decrypts file names with EME and base64.

    With ``long_names`` set, cipher names longer than ``long_name_max``
    (0 meaning 255) are hashed to ``gocryptfs.longname.[sha256]``.
    """

    def __init__(
        self,
        eme_cipher: EMECipher,
        long_names: bool,
        long_name_max: int,
        raw64: bool,
        badname: Iterable[str] | None,
        deterministic_names: bool,
    ) -> None:
        self._eme = eme_cipher
        self.long_name_max = _UNLIMITED
        if long_names:
            self.long_name_max = long_name_max or NAME_MAX
        self.raw64 = bool(raw64)
        self.badname_patterns: list[str] = list(badname or [])
        self.deterministic_names = bool(deterministic_names)
        log.debug(
            "NameTransform: long_name_max=%s raw64=%s badname=%r",
            long_name_max, raw64, self.badname_patterns,
        )

    # -- base64 ----------------------------------------------------------

    def b64_encode(self, data: bytes) -> str:
        """Encode ``data`` as URL-safe base64, unpadded in raw64 mode."""
        encoded = base64.urlsafe_b64encode(bytes(data)).decode("ascii")
        return encoded.rstrip("=") if self.raw64 else encoded

    def b64_decode(self, s: str) -> bytes:
        """Decode URL-safe base64 strictly; raise binascii.Error if invalid."""
        if not _B64_SHAPE.fullmatch(s):
            raise binascii.Error(f"illegal base64 data in {s!r}")
        if self.raw64:
            if "=" in s or len(s) % 4 == 1:
                raise binascii.Error(f"illegal base64 data in {s!r}")
            s += "=" * (-len(s) % 4)
        elif len(s) % 4:
            raise binascii.Error(f"illegal base64 data in {s!r}")
        return base64.b64decode(s.encode("ascii"), altchars=b"-_", validate=True)

    def _encoded_len(self, n: int) -> int:
        if self.raw64:
            return (n * 8 + 5) // 6
        return (n + 2) // 3 * 4

    # -- file names ------------------------------------------------------

    def _decrypt_name(self, cipher_name: str, iv: bytes) -> str:
        data = self.b64_decode(cipher_name)
        if not data:
            log.warning("decrypt_name: empty input")
            raise _os_error(errno.EBADMSG, "empty input")
        if len(data) % AES_BLOCK_SIZE:
            log.debug("decrypt_name %r: decoded length %d is not a multiple of 16",
                      cipher_name, len(data))
            raise _os_error(errno.EBADMSG, "unaligned cipher name")
        try:
            plain = unpad16(self._eme.decrypt(iv, data))
        except ValueError as exc:
            log.warning("decrypt_name %r: unpad16 error: %s", cipher_name, exc)
            raise _os_error(errno.EBADMSG, str(exc)) from exc
        return _to_str(plain)

    def _encrypt_name(self, plain_name: str | bytes, iv: bytes) -> str:
        return self.b64_encode(self._eme.encrypt(iv, pad16(_to_bytes(plain_name))))

    def _decrypt_badname(self, cipher_name: str, iv: bytes) -> str:
        for pattern in self.badname_patterns:
            if not fnmatch.fnmatchcase(cipher_name, pattern):
                continue
            # At least one AES block must be left to decrypt.
            name_min = self._encoded_len(AES_BLOCK_SIZE)
            for charpos in range(len(cipher_name) - 1, name_min - 1, -1):
                try:
                    res = self._decrypt_name(cipher_name[:charpos], iv)
                except (OSError, binascii.Error):
                    continue
                return res + cipher_name[charpos:] + BADNAME_SUFFIX
            return cipher_name + BADNAME_SUFFIX
        raise _os_error(errno.EBADMSG, "no badname pattern matches")

    def have_badname_patterns(self) -> bool:
        """True if badname patterns were configured."""
        return bool(self.badname_patterns)

    def decrypt_name(self, cipher_name: str, iv: bytes) -> str:
        """Decrypt a base64 cipher name, falling back to badname patterns."""
        try:
            res = self._decrypt_name(cipher_name, iv)
        except (OSError, binascii.Error):
            if not self.have_badname_patterns():
                raise
            res = self._decrypt_badname(cipher_name, iv)
        problem = _name_problem(res)
        if problem:
            log.warning("decrypt_name %r: invalid name after decryption: %s", cipher_name, problem)
            raise _os_error(errno.EBADMSG, problem)
        return res

    def encrypt_name(self, plain_name: str, iv: bytes) -> str:
        """Encrypt ``plain_name``; invalid names raise EBADMSG."""
        problem = _name_problem(plain_name)
        if problem:
            log.warning("encrypt_name %r: invalid plain name: %s", plain_name, problem)
            raise _os_error(errno.EBADMSG, problem)
        return self._encrypt_name(plain_name, iv)

    def encrypt_and_hash_name(self, name: str, iv: bytes) -> str:
        """Encrypt ``name`` and hash it if the result is too long."""
        if len(_to_bytes(name)) > NAME_MAX:
            raise _os_error(errno.ENAMETOOLONG)
        c_name = self.encrypt_name(name, iv)
        if len(c_name) > self.long_name_max:
            return self.hash_long_name(c_name)
        return c_name

    def encrypt_and_hash_bad_name(self, name: str, iv: bytes, dirfd: int) -> str:
        """Find the unique existing cipher file a badname-marked ``name`` refers to.

        Raises ENOENT if no file or more than one candidate exists.
        """
        last_found = self.encrypt_and_hash_name(name, iv)
        if not name.endswith(BADNAME_SUFFIX):
            return last_found
        if _exists_at(dirfd, last_found):
            return last_found
        stem = name[: len(name) - len(BADNAME_SUFFIX)]
        files_found = 0
        if _exists_at(dirfd, stem):
            files_found += 1
            last_found = stem
        for charpos in range(len(stem), 0, -1):
            try:
                c_part = self.encrypt_name(name[:charpos], iv)
            except OSError:
                continue
            candidate = c_part + stem[charpos:]
            if _exists_at(dirfd, candidate):
                files_found += 1
                last_found = candidate
        if files_found == 1:
            return last_found
        raise _os_error(errno.ENOENT, name)

    def hash_long_name(self, name: str) -> str:
        """Return ``gocryptfs.longname.`` followed by the base64 SHA-256 of ``name``."""
        digest = hashlib.sha256(_to_bytes(name)).digest()
        return LONG_NAME_PREFIX + self.b64_encode(digest)

    # -- xattr names -----------------------------------------------------

    def encrypt_xattr_name(self, plain_name: str) -> str:
        """Encrypt an extended attribute name with the fixed xattr IV."""
        problem = _xattr_name_problem(plain_name)
        if problem:
            log.warning("encrypt_xattr_name %r: invalid plain name: %s", plain_name, problem)
            raise _os_error(errno.EBADMSG, problem)
        return self._encrypt_name(plain_name, XATTR_NAME_IV)

    def decrypt_xattr_name(self, cipher_name: str) -> str:
        """Decrypt an extended attribute name."""
        plain = self._decrypt_name(cipher_name, XATTR_NAME_IV)
        problem = _xattr_name_problem(plain)
        if problem:
            log.warning("decrypt_xattr_name %r: invalid name after decryption: %s",
                        cipher_name, problem)
            raise _os_error(errno.EBADMSG, problem)
        return plain


def _exists_at(dirfd: int, name: str) -> bool:
    try:
        os.stat(name, dir_fd=dirfd, follow_symlinks=False)
    except (OSError, ValueError):
        return False
    return True