"""EME (ECB-Mix-ECB) wide-block encryption on top of AES.

EME encrypts 1 to 128 AES blocks as a single unit under a 16-byte tweak.
Changing any input bit changes every output block.
"""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

__all__ = ["BLOCK_SIZE", "MAX_BLOCKS", "EMECipher"]

BLOCK_SIZE = 16
MAX_BLOCKS = 16 * 8

_MASK128 = (1 << 128) - 1


def _mult_by_two(block: bytes) -> bytes:
    """Multiply by two in GF(2^128), little-endian byte order."""
    value = int.from_bytes(block, "little")
    out = (value << 1) & _MASK128
    if value >> 127:
        out ^= 0x87
    return out.to_bytes(BLOCK_SIZE, "little")


def _xor(a: bytes, b: bytes) -> bytes:
    return (int.from_bytes(a, "big") ^ int.from_bytes(b, "big")).to_bytes(len(a), "big")


def _split(data: bytes) -> list[bytes]:
    return [data[i:i + BLOCK_SIZE] for i in range(0, len(data), BLOCK_SIZE)]


class EMECipher:
    """EME transform keyed with an AES key of 16, 24 or 32 bytes."""

    def __init__(self, key: bytes) -> None:
        self._cipher = Cipher(algorithms.AES(bytes(key)), modes.ECB())
        l_value = self._ecb(bytes(BLOCK_SIZE), decrypt=False)
        self._l_table: list[bytes] = []
        for _ in range(MAX_BLOCKS):
            l_value = _mult_by_two(l_value)
            self._l_table.append(l_value)

    def _ecb(self, data: bytes, decrypt: bool) -> bytes:
        ctx = self._cipher.decryptor() if decrypt else self._cipher.encryptor()
        return ctx.update(data) + ctx.finalize()

    def _transform(self, tweak: bytes, data: bytes, decrypt: bool) -> bytes:
        tweak = bytes(tweak)
        data = bytes(data)
        if len(tweak) != BLOCK_SIZE:
            raise ValueError(f"tweak must be {BLOCK_SIZE} bytes long, got {len(tweak)}")
        if len(data) % BLOCK_SIZE:
            raise ValueError(f"data length {len(data)} is not a multiple of {BLOCK_SIZE}")
        m = len(data) // BLOCK_SIZE
        if m == 0 or m > MAX_BLOCKS:
            raise ValueError(f"EME operates on 1 to {MAX_BLOCKS} blocks, got {m}")

        l_mask = b"".join(self._l_table[:m])
        ppp_blocks = _split(self._ecb(_xor(data, l_mask), decrypt))

        mp = tweak
        for block in ppp_blocks:
            mp = _xor(mp, block)
        mc = self._ecb(mp, decrypt)

        mixer = _xor(mp, mc)
        ccc_rest = []
        for block in ppp_blocks[1:]:
            mixer = _mult_by_two(mixer)
            ccc_rest.append(_xor(block, mixer))

        ccc1 = _xor(mc, tweak)
        for block in ccc_rest:
            ccc1 = _xor(ccc1, block)

        cc = self._ecb(ccc1 + b"".join(ccc_rest), decrypt)
        return _xor(cc, l_mask)

    def encrypt(self, tweak: bytes, data: bytes) -> bytes:
        """Encrypt ``data`` (a whole number of blocks) under ``tweak``."""
        return self._transform(tweak, data, decrypt=False)

    def decrypt(self, tweak: bytes, data: bytes) -> bytes:
        """Decrypt ``data`` (a whole number of blocks) under ``tweak``."""
        return self._transform(tweak, data, decrypt=True)