"""AES-SIV (RFC 5297) exposed as an AEAD with a 16-byte nonce.

The nonce is passed to SIV as the last associated-data element, after the
authentication data.
"""

from __future__ import annotations

import hmac

from cryptography.hazmat.primitives import cmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

__all__ = ["KEY_LEN", "NONCE_SIZE", "OVERHEAD", "AuthenticationError", "SivAead", "new"]

KEY_LEN = 64
NONCE_SIZE = 16
OVERHEAD = 16

_BLOCK = 16
_MASK128 = (1 << 128) - 1


class AuthenticationError(ValueError):
    """The ciphertext failed authentication."""


def _dbl(block: bytes) -> bytes:
    value = int.from_bytes(block, "big")
    shifted = (value << 1) & _MASK128
    if value >> 127:
        shifted ^= 0x87
    return shifted.to_bytes(_BLOCK, "big")


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _cmac(key: bytes, data: bytes) -> bytes:
    mac = cmac.CMAC(algorithms.AES(key))
    mac.update(data)
    return mac.finalize()


def _s2v(key: bytes, components: list[bytes]) -> bytes:
    d = _cmac(key, bytes(_BLOCK))
    *head, last = components
    for item in head:
        d = _xor(_dbl(d), _cmac(key, item))
    if len(last) >= _BLOCK:
        t = last[:-_BLOCK] + _xor(last[-_BLOCK:], d)
    else:
        padded = last + b"\x80" + bytes(_BLOCK - len(last) - 1)
        t = _xor(_dbl(d), padded)
    return _cmac(key, t)


def _ctr(key: bytes, v: bytes, data: bytes) -> bytes:
    q = bytearray(v)
    q[8] &= 0x7F
    q[12] &= 0x7F
    ctx = Cipher(algorithms.AES(key), modes.CTR(bytes(q))).encryptor()
    return ctx.update(data) + ctx.finalize()


class SivAead:
    """AES-SIV AEAD. Accepts 32, 48 or 64-byte keys."""

    NONCE_SIZE = NONCE_SIZE
    OVERHEAD = OVERHEAD

    def __init__(self, key: bytes) -> None:
        if len(key) not in (32, 48, 64):
            raise ValueError(f"AES-SIV key must be 32, 48 or 64 bytes long (got {len(key)})")
        # Private copy so the caller may wipe its own.
        self._key: bytearray | None = bytearray(key)

    def _keys(self, nonce: bytes) -> tuple[bytes, bytes]:
        if len(nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes long")
        if not self._key:
            raise RuntimeError("key has been wiped")
        half = len(self._key) // 2
        return bytes(self._key[:half]), bytes(self._key[half:])

    def seal(self, dst: bytes | None, nonce: bytes, plaintext: bytes, auth_data: bytes | None) -> bytes:
        """Encrypt ``plaintext`` and return ``dst`` followed by tag and ciphertext."""
        mac_key, ctr_key = self._keys(nonce)
        v = _s2v(mac_key, [bytes(auth_data or b""), bytes(nonce), bytes(plaintext)])
        return bytes(dst or b"") + v + _ctr(ctr_key, v, bytes(plaintext))

    def open(self, dst: bytes | None, nonce: bytes, ciphertext: bytes, auth_data: bytes | None) -> bytes:
        """Decrypt and verify; return ``dst`` followed by the plaintext.

        Raises AuthenticationError if the ciphertext is short or corrupt.
        """
        mac_key, ctr_key = self._keys(nonce)
        ciphertext = bytes(ciphertext)
        if len(ciphertext) < OVERHEAD:
            raise AuthenticationError("ciphertext too short")
        v, body = ciphertext[:OVERHEAD], ciphertext[OVERHEAD:]
        plaintext = _ctr(ctr_key, v, body)
        expected = _s2v(mac_key, [bytes(auth_data or b""), bytes(nonce), plaintext])
        if not hmac.compare_digest(expected, v):
            raise AuthenticationError("message authentication failed")
        return bytes(dst or b"") + plaintext

    def wipe(self) -> None:
        """Overwrite the key with zeros and drop it."""
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
        self._key = None


def new(key: bytes) -> SivAead:
    """Return an AES-SIV AEAD; the key must be exactly 64 bytes."""
    if len(key) != KEY_LEN:
        raise ValueError(f"Key must be {KEY_LEN} byte long (you passed {len(key)})")
    return SivAead(key)