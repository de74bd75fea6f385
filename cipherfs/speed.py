"""Benchmark the authenticated ciphers the filesystem can use.

Each cipher encrypts 4 KiB blocks with 24 bytes of authentication data,
which is what one file content block costs. Results are printed in MB/s.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import dataclass
from typing import Callable, Sequence, TextIO

from Crypto.Cipher import AES, ChaCha20_Poly1305
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .siv_aead import SivAead

__all__ = [
    "AD_LEN",
    "BLOCK_SIZE",
    "DEFAULT_BENCH_TIME",
    "Backend",
    "BACKENDS",
    "BenchmarkResult",
    "cpu_model_name",
    "mb_per_sec",
    "benchmark_encrypt",
    "run",
    "main",
]

# 128-bit file ID + 64-bit block number = 24 bytes of authentication data.
AD_LEN = 24
# File contents are encrypted in fixed-size 4 KiB blocks.
BLOCK_SIZE = 4096
# Minimum time, in seconds, that each benchmark runs for.
DEFAULT_BENCH_TIME = 1.0

_CPUINFO = "/proc/cpuinfo"
_MAX_N = 1_000_000_000

Seal = Callable[[bytes, bytes, bytes], bytes]


@dataclass(frozen=True)
class BenchmarkResult:
    """Outcome of a benchmark: ``n`` operations of ``bytes`` each in ``seconds``."""

    n: int
    seconds: float
    bytes: int


def _read_cpuinfo(path: str | None) -> str | None:
    if path is None:
        if not sys.platform.startswith("linux"):
            return None
        path = _CPUINFO
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError:
        return None


def cpu_model_name(path: str | None = None) -> str:
    """Return the CPU "model name" (or "Hardware" on ARM) from cpuinfo, or ""."""
    content = _read_cpuinfo(path)
    if content is None:
        return ""
    lines = content.split("\n")
    for want in ("model name", "Hardware"):
        for line in lines:
            if line.startswith(want):
                key, sep, value = line.partition(":")
                if not sep:
                    continue
                return value.strip()
    return ""


def _cpu_has_aes(path: str | None = None) -> bool:
    content = _read_cpuinfo(path)
    if content is None:
        return False
    for line in content.split("\n"):
        if line.startswith(("flags", "Features")):
            _, sep, value = line.partition(":")
            if sep and "aes" in value.split():
                return True
    return False


def mb_per_sec(result: BenchmarkResult) -> float:
    """Throughput in MB/s, or 0 if the result holds no measurement."""
    if result.bytes <= 0 or result.seconds <= 0 or result.n <= 0:
        return 0.0
    return (result.bytes * result.n / 1e6) / result.seconds


def benchmark_encrypt(seal: Seal, nonce_size: int, duration: float = DEFAULT_BENCH_TIME) -> BenchmarkResult:
    """Time ``seal(nonce, plaintext, auth_data)`` on 4 KiB blocks.

    The number of iterations grows until one round takes at least ``duration``
    seconds; the last round is reported.
    """
    auth_data = os.urandom(AD_LEN)
    nonce = os.urandom(nonce_size)
    block = bytes(BLOCK_SIZE)
    n = 1
    while True:
        start = time.perf_counter()
        for _ in range(n):
            seal(nonce, block, auth_data)
        elapsed = time.perf_counter() - start
        if elapsed >= duration or n >= _MAX_N:
            return BenchmarkResult(n=n, seconds=elapsed, bytes=BLOCK_SIZE)
        if elapsed <= 0:
            n *= 100
        else:
            predicted = int(n * duration / elapsed * 1.2) + 1
            n = max(n + 1, min(n * 100, predicted))
        n = min(n, _MAX_N)


def _openssl_gcm() -> tuple[Seal, int]:
    aead = AESGCM(os.urandom(32))
    return (lambda nonce, data, ad: aead.encrypt(nonce, data, ad)), 16


def _pycryptodome_gcm() -> tuple[Seal, int]:
    key = os.urandom(32)

    def seal(nonce: bytes, data: bytes, ad: bytes) -> bytes:
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        cipher.update(ad)
        ciphertext, tag = cipher.encrypt_and_digest(data)
        return ciphertext + tag

    return seal, 16


def _aes_siv() -> tuple[Seal, int]:
    aead = SivAead(os.urandom(64))
    return (lambda nonce, data, ad: aead.seal(None, nonce, data, ad)), SivAead.NONCE_SIZE


def _xchacha20poly1305() -> tuple[Seal, int]:
    key = os.urandom(32)

    def seal(nonce: bytes, data: bytes, ad: bytes) -> bytes:
        cipher = ChaCha20_Poly1305.new(key=key, nonce=nonce)
        cipher.update(ad)
        ciphertext, tag = cipher.encrypt_and_digest(data)
        return ciphertext + tag

    return seal, 24


@dataclass(frozen=True)
class Backend:
    """A benchmarked cipher: ``factory`` returns a seal function and its nonce size."""

    name: str
    factory: Callable[[], tuple[Seal, int]]
    preferred: bool


BACKENDS: tuple[Backend, ...] = (
    Backend("AES-GCM-256-OpenSSL", _openssl_gcm, True),
    Backend("AES-GCM-256-pycryptodome", _pycryptodome_gcm, False),
    Backend("AES-SIV-512", _aes_siv, False),
    Backend("XChaCha20-Poly1305", _xchacha20poly1305, True),
)


def run(out: TextIO | None = None) -> None:
    """Run all benchmarks and print the results to ``out`` (stdout by default)."""
    if out is None:
        out = sys.stdout
    cpu = cpu_model_name() or "unknown"
    accel = "; with AES acceleration" if _cpu_has_aes() else "; no AES acceleration"
    out.write(f"cpu: {cpu}{accel}\n")
    for backend in BACKENDS:
        out.write(f"{backend.name:<26}\t")
        try:
            seal, nonce_size = backend.factory()
            mbs = mb_per_sec(benchmark_encrypt(seal, nonce_size, DEFAULT_BENCH_TIME))
        except (ValueError, RuntimeError, ImportError):
            mbs = 0.0
        if mbs > 0:
            out.write(f"{mbs:7.2f} MB/s")
        else:
            out.write("    N/A")
        if backend.preferred:
            out.write("\t(selected in auto mode)\n")
        else:
            out.write("\n")
        out.flush()


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point: benchmark the ciphers, similar to "openssl speed"."""
    parser = argparse.ArgumentParser(
        prog="cipherfs-speed",
        description="Benchmark the authenticated ciphers used for file content encryption.",
    )
    parser.parse_args(argv)
    run()
    return 0


if __name__ == "__main__":
    sys.exit(main())