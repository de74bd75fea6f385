"""Read a password from a password file, an external program, stdin or the terminal."""

from __future__ import annotations

import getpass
import hmac
import logging
import subprocess
import sys
from typing import BinaryIO, Sequence

__all__ = [
    "MAX_PASSWORD_LEN",
    "PasswordError",
    "once",
    "twice",
    "read_pass_file",
    "read_pass_file_concatenate",
    "read_password_extpass",
    "read_password_stdin",
    "read_line_unbuffered",
]

log = logging.getLogger(__name__)

# 2 kB limit, like EncFS.
MAX_PASSWORD_LEN = 2048


class PasswordError(Exception):
    """The password could not be obtained, or was empty."""


def read_pass_file(passfile: str) -> bytes:
    """Return the first line of ``passfile``, without the newline."""
    log.info("passfile: reading from file %r", passfile)
    try:
        with open(passfile, "rb") as f:
            # +1 for an optional trailing newline, +2 to detect an overlong line.
            buf = f.read(MAX_PASSWORD_LEN + 2)
    except OSError as exc:
        raise PasswordError(f"passfile: could not read {passfile!r}: {exc}") from exc
    if not buf:
        raise PasswordError(f"passfile: could not read from {passfile!r}: EOF")
    first, sep, rest = buf.partition(b"\n")
    if not first:
        raise PasswordError(f"passfile: empty first line in {passfile!r}")
    if len(first) > MAX_PASSWORD_LEN:
        raise PasswordError(
            f"passfile: max password length ({MAX_PASSWORD_LEN} bytes) exceeded"
        )
    if sep and rest:
        log.warning(
            "passfile: ignoring trailing garbage (%d bytes) after first line", len(rest)
        )
    return first


def read_pass_file_concatenate(passfiles: Sequence[str]) -> bytes:
    """Concatenate the first lines of all ``passfiles``."""
    return b"".join(read_pass_file(p) for p in passfiles)


def read_line_unbuffered(stream: BinaryIO) -> bytes:
    """Read single bytes from ``stream`` until a newline or EOF.

    The newline is not returned, and nothing after it is consumed.
    """
    line = bytearray()
    while True:
        if len(line) > MAX_PASSWORD_LEN:
            raise PasswordError(
                f"maximum password length of {MAX_PASSWORD_LEN} bytes exceeded"
            )
        try:
            b = stream.read(1)
        except OSError as exc:
            raise PasswordError(f"read_line_unbuffered: {exc}") from exc
        if b is None:
            continue
        if isinstance(b, str):
            b = b.encode("utf-8", "surrogateescape")
        if not b:
            return bytes(line)
        if b == b"\n":
            return bytes(line)
        line += b


def read_password_stdin(prompt: str, stream: BinaryIO | None = None) -> bytes:
    """Read one line from ``stream`` (standard input by default)."""
    if stream is None:
        stream = sys.stdin.buffer
    log.info("Reading %s from stdin", prompt)
    p = read_line_unbuffered(stream)
    if not p:
        raise PasswordError(f"Got empty {prompt} from stdin")
    return p


def read_password_extpass(extpass: Sequence[str]) -> bytes:
    """Run the external program and return the first line of its output.

    A single element is split on spaces into program and arguments.
    """
    parts = extpass[0].split(" ") if len(extpass) == 1 else list(extpass)
    log.info("Reading password from extpass program %r, arguments: %r", parts[0], parts[1:])
    try:
        proc = subprocess.Popen(parts, stdout=subprocess.PIPE)
    except OSError as exc:
        raise PasswordError(f"extpass cmd start failed: {exc}") from exc
    try:
        assert proc.stdout is not None
        p = read_line_unbuffered(proc.stdout)
    except BaseException:
        proc.kill()
        proc.wait()
        raise
    finally:
        if proc.stdout is not None:
            proc.stdout.close()
    rc = proc.wait()
    if rc != 0:
        raise PasswordError(f"extpass program returned an error: exit status {rc}")
    if not p:
        raise PasswordError("extpass: password is empty")
    return p


def _stdin_is_terminal() -> bool:
    try:
        return bool(sys.stdin.isatty())
    except (AttributeError, ValueError):
        return False


def _read_password_terminal(prompt: str) -> bytes:
    try:
        p = getpass.getpass(prompt, stream=sys.stderr)
    except (EOFError, OSError) as exc:
        raise PasswordError(f"Could not read password from terminal: {exc}") from exc
    if not p:
        raise PasswordError("Password is empty")
    return p.encode("utf-8", "surrogateescape")


def once(
    extpass: Sequence[str] | None = None,
    passfile: Sequence[str] | None = None,
    prompt: str = "",
) -> bytes:
    """Get a password from passfile, extpass, stdin or the terminal, in that order.

    An empty ``prompt`` means "Password".
    """
    if passfile:
        return read_pass_file_concatenate(passfile)
    if extpass:
        return read_password_extpass(extpass)
    if not prompt:
        prompt = "Password"
    if not _stdin_is_terminal():
        return read_password_stdin(prompt)
    return _read_password_terminal(prompt + ": ")


def twice(
    extpass: Sequence[str] | None = None,
    passfile: Sequence[str] | None = None,
) -> bytes:
    """Like ``once``, but ask twice and compare when reading from the terminal."""
    if passfile:
        return read_pass_file_concatenate(passfile)
    if extpass:
        return read_password_extpass(extpass)
    if not _stdin_is_terminal():
        return read_password_stdin("Password")
    p1 = _read_password_terminal("Password: ")
    p2 = _read_password_terminal("Repeat: ")
    if not hmac.compare_digest(p1, p2):
        raise PasswordError("Passwords do not match")
    return p1