"""Encrypted view of a plaintext directory tree (reverse mode).

In reverse mode the backing directory holds plaintext and the view presents
its ciphertext. Names are encrypted with IVs derived from the encrypted
path, so no ``gocryptfs.diriv`` files have to be stored on disk. They are
presented as virtual files instead, together with ``*.name`` files for
hashed long names.

Errors are raised as ``OSError`` carrying the errno a filesystem would
report.
"""

from __future__ import annotations

import binascii
import enum
import errno
import logging
import os
import posixpath
import secrets
import stat
from dataclasses import dataclass
from typing import Iterable, Sequence

from .excluder import GitIgnore, prepare_excluder
from .nameio import DIR_IV_FILENAME
from .names import (
    LONG_NAME_SUFFIX,
    NAME_MAX,
    LongNameType,
    NameTransform,
    name_type,
    remove_long_name_suffix,
)
from .pathiv import DIR_IV_LEN, Purpose, derive

__all__ = [
    "CONF_DEFAULT_NAME",
    "CONF_REVERSE_NAME",
    "SHORT_NAME_MAX",
    "VIRTUAL_FILE_MODE",
    "INVALID_NAME",
    "ReverseOptions",
    "FileType",
    "DirEntry",
    "ReverseRoot",
]

log = logging.getLogger(__name__)

CONF_DEFAULT_NAME = "gocryptfs.conf"
CONF_REVERSE_NAME = ".gocryptfs.reverse.conf"

# Names are padded to 16-byte multiples, encrypted and base64-encoded.
# base64(176 bytes) = 235 bytes, base64(192 bytes) = 256 bytes, and PKCS#7
# padding takes at least one byte: names of up to 175 bytes stay short.
SHORT_NAME_MAX = 175

# Virtual files (gocryptfs.diriv and *.name) are always readable.
VIRTUAL_FILE_MODE = stat.S_IFREG | 0o444

INVALID_NAME = "___GOCRYPTFS_INVALID_NAME___"


def _os_error(code: int, detail: str = "") -> OSError:
    message = os.strerror(code)
    if detail:
        message = f"{message}: {detail}"
    return OSError(code, message)


def _join(*parts: str) -> str:
    """Join path elements, skipping empty ones, and clean the result."""
    kept = [p for p in parts if p]
    if not kept:
        return ""
    return posixpath.normpath("/".join(kept))


def _byte_len(name: str) -> int:
    return len(name.encode("utf-8", "surrogateescape"))


def _open_dir_nofollow(base: str, rel: str) -> int:
    """Open ``base/rel`` as a directory without following symlinks below ``base``."""
    fd = os.open(base, os.O_RDONLY | os.O_DIRECTORY)
    try:
        for component in (c for c in rel.split("/") if c and c != "."):
            child = os.open(
                component, os.O_RDONLY | os.O_DIRECTORY | os.O_NOFOLLOW, dir_fd=fd
            )
            os.close(fd)
            fd = child
    except BaseException:
        os.close(fd)
        raise
    return fd


class FileType(enum.Enum):
    """Kinds of names that can be looked up in the encrypted view."""

    REAL = "real"  # a file, directory or symlink in the backing directory
    DIRIV = "diriv"  # a virtual gocryptfs.diriv file
    NAME = "name"  # a virtual gocryptfs.longname.*.name file
    CONFIG = "config"  # gocryptfs.conf, backed by .gocryptfs.reverse.conf


@dataclass(frozen=True)
class DirEntry:
    """A directory entry: its name and its file-type bits."""

    name: str
    mode: int


@dataclass
class ReverseOptions:
    """Settings of a reverse view; ``cipherdir`` is the plaintext backing directory."""

    cipherdir: str
    plaintext_names: bool = False
    deterministic_names: bool = False
    long_names: bool = True
    config_custom: bool = False
    one_file_system: bool = False
    exclude: Sequence[str] = ()
    exclude_wildcard: Sequence[str] = ()
    exclude_from: Sequence[str] = ()


class ReverseRoot:
    """Root of an encrypted view over a plaintext directory."""

    def __init__(self, options: ReverseOptions, name_transform: NameTransform) -> None:
        self.options = options
        self.name_transform = name_transform
        self.root_dev = 0
        try:
            self.root_dev = os.stat(options.cipherdir).st_dev
        except OSError as exc:
            log.warning("Could not stat backing directory %r: %s", options.cipherdir, exc)
            if options.one_file_system:
                raise
        self.excluder: GitIgnore | None = None
        if options.exclude or options.exclude_wildcard or options.exclude_from:
            self.excluder = prepare_excluder(
                options.exclude, options.exclude_wildcard, options.exclude_from
            )

    # -- paths -----------------------------------------------------------

    def derive_dir_iv(self, c_path: str) -> bytes:
        """IV of the directory at ciphertext path ``c_path``."""
        if self.options.plaintext_names:
            raise RuntimeError("derive_dir_iv called but plaintext names are in use")
        if self.options.deterministic_names:
            return bytes(DIR_IV_LEN)
        return derive(c_path, Purpose.DIR_IV)

    def encrypt_path(self, plain_path: str) -> str:
        """Encrypt a relative plaintext path into a relative ciphertext path."""
        if self.options.plaintext_names or plain_path == "":
            return plain_path
        cipher_path = ""
        for part in plain_path.split("/"):
            dir_iv = self.derive_dir_iv(cipher_path)
            encrypted = self.name_transform.encrypt_name(part, dir_iv)
            if self.options.long_names and len(encrypted) > NAME_MAX:
                encrypted = self.name_transform.hash_long_name(encrypted)
            cipher_path = _join(cipher_path, encrypted)
        return cipher_path

    def decrypt_path(self, cipher_path: str) -> str:
        """Decrypt a relative ciphertext path into a relative plaintext path."""
        if self.options.plaintext_names or cipher_path == "":
            return cipher_path
        parts = cipher_path.split("/")
        plain_parts: list[str] = []
        for i, part in enumerate(parts):
            dir_iv = self.derive_dir_iv(_join(*parts[:i]))
            plain_parts.append(self._decrypt_name(part, dir_iv, _join(*plain_parts)))
        return _join(*plain_parts)

    def _decrypt_name(self, c_name: str, dir_iv: bytes, p_dir: str) -> str:
        kind = name_type(c_name)
        if kind is LongNameType.NONE:
            try:
                return self.name_transform.decrypt_name(c_name, dir_iv)
            except binascii.Error as exc:
                # Names like ".Trash" are not base64 at all.
                raise _os_error(errno.ENOENT, c_name) from exc
            except OSError as exc:
                if exc.errno == errno.EBADMSG:
                    raise _os_error(errno.ENOENT, c_name) from exc
                raise
        if kind is LongNameType.CONTENT:
            p_name, _ = self.find_longname_parent(p_dir, dir_iv, c_name)
            return p_name
        # A ".name" file is virtual and has no plaintext counterpart.
        log.warning("cannot decrypt virtual file %r", c_name)
        raise _os_error(errno.EINVAL, c_name)

    def find_longname_parent(self, dir_path: str, diriv: bytes, longname: str) -> tuple[str, str]:
        """Find the plaintext entry in ``dir_path`` whose hashed cipher name is ``longname``.

        ``dir_path`` is relative to the backing directory; ``longname`` may
        carry the ``.name`` suffix. Returns the plaintext name and the full
        (unhashed) cipher name. Raises ENOENT if there is no such entry.
        """
        if longname.endswith(LONG_NAME_SUFFIX):
            longname = remove_long_name_suffix(longname)
        fd = _open_dir_nofollow(self.options.cipherdir, dir_path)
        try:
            names = os.listdir(fd)
        finally:
            os.close(fd)
        for name in names:
            if _byte_len(name) <= SHORT_NAME_MAX:
                continue
            try:
                c_full = self.name_transform.encrypt_name(name, diriv)
            except OSError:
                continue
            if len(c_full) <= NAME_MAX:
                raise RuntimeError("logic error or wrong SHORT_NAME_MAX constant")
            if self.name_transform.hash_long_name(c_full) == longname:
                return name, c_full
        raise _os_error(errno.ENOENT, longname)

    # -- exclusion -------------------------------------------------------

    def is_excluded_plain(self, p_path: str) -> bool:
        """True if the relative plaintext path ``p_path`` is excluded."""
        if p_path == "":
            return False
        return self.excluder is not None and self.excluder.matches_path(p_path)

    def exclude_dir_entries(self, p_dir: str, names: Iterable[str]) -> list[str]:
        """Drop the names in plaintext directory ``p_dir`` that are excluded."""
        names = list(names)
        if self.excluder is None:
            return names
        return [n for n in names if not self.is_excluded_plain(_join(p_dir, n))]

    # -- lookup and listing ----------------------------------------------

    def lookup_file_type(self, c_name: str, is_root: bool) -> FileType:
        """Classify the child name ``c_name`` of a directory."""
        opts = self.options
        if not opts.plaintext_names:
            if not opts.deterministic_names and c_name == DIR_IV_FILENAME:
                return FileType.DIRIV
            if name_type(c_name) is LongNameType.FILENAME:
                return FileType.NAME
        if is_root and not opts.config_custom and c_name == CONF_DEFAULT_NAME:
            return FileType.CONFIG
        return FileType.REAL

    def _open_backing_dir(self, c_path: str) -> tuple[int, str]:
        p_path = self.decrypt_path(c_path)
        if self.is_excluded_plain(p_path):
            raise _os_error(errno.EPERM, p_path)
        return _open_dir_nofollow(self.options.cipherdir, p_path), p_path

    def list_dir(self, c_path: str) -> list[DirEntry]:
        """List the encrypted view of the directory at ciphertext path ``c_path``."""
        opts = self.options
        is_root = c_path == ""
        virtual: list[DirEntry] = []
        if not opts.plaintext_names and not opts.deterministic_names:
            virtual.append(DirEntry(DIR_IV_FILENAME, VIRTUAL_FILE_MODE))

        fd, p_path = self._open_backing_dir(c_path)
        try:
            if opts.one_file_system and os.fstat(fd).st_dev != self.root_dev:
                # A mountpoint is presented as empty.
                return virtual
            entries = []
            for name in self.exclude_dir_entries(p_path, os.listdir(fd)):
                try:
                    st = os.stat(name, dir_fd=fd, follow_symlinks=False)
                except FileNotFoundError:
                    continue
                entries.append(DirEntry(name, stat.S_IFMT(st.st_mode)))
        finally:
            os.close(fd)

        if opts.plaintext_names:
            return self._list_plaintext_names(entries, is_root)

        dir_iv = self.derive_dir_iv(c_path)
        out: list[DirEntry] = []
        for entry in entries:
            if is_root and entry.name == CONF_REVERSE_NAME and not opts.config_custom:
                c_name = CONF_DEFAULT_NAME
            else:
                try:
                    c_name = self.name_transform.encrypt_name(entry.name, dir_iv)
                except OSError:
                    out.append(DirEntry(INVALID_NAME, entry.mode))
                    continue
                if len(c_name) > NAME_MAX:
                    c_name = self.name_transform.hash_long_name(c_name)
                    virtual.append(DirEntry(c_name + LONG_NAME_SUFFIX, VIRTUAL_FILE_MODE))
            out.append(DirEntry(c_name, entry.mode))
        return out + virtual

    def _list_plaintext_names(self, entries: list[DirEntry], is_root: bool) -> list[DirEntry]:
        if not is_root or self.options.config_custom:
            return entries
        out: list[DirEntry] = []
        dupe = None
        for entry in entries:
            if entry.name == CONF_REVERSE_NAME:
                out.append(DirEntry(CONF_DEFAULT_NAME, entry.mode))
            else:
                if entry.name == CONF_DEFAULT_NAME:
                    dupe = len(out)
                out.append(entry)
        if dupe is not None:
            log.warning(
                "The file %r is mapped to %r and shadows another file. "
                "Please rename %r in directory %r.",
                CONF_REVERSE_NAME, CONF_DEFAULT_NAME, CONF_DEFAULT_NAME, self.options.cipherdir,
            )
            out[dupe] = DirEntry(
                f"{CONF_DEFAULT_NAME}_NAME_COLLISION_{secrets.randbits(64)}", out[dupe].mode
            )
        return out