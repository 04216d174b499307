from __future__ import annotations

from typing import Optional, Protocol, Union

import numpy as np

_MASK32 = 0xFFFFFFFF
_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_MULBERRY_INCREMENT = 0x6D2B79F5


class Rng(Protocol):
    def random(self) -> float: ...


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


def hash_seed(value: str) -> int:
    """FNV-1a over UTF-16 code units, returned as an unsigned 32-bit int."""
    hashed = _FNV_OFFSET
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        hashed ^= encoded[i] | (encoded[i + 1] << 8)
        hashed = _imul(hashed, _FNV_PRIME)
    return hashed & _MASK32


def seed_to_int(seed: Union[int, float, str]) -> int:
    if isinstance(seed, (int, float)) and not isinstance(seed, bool):
        return int(seed) & _MASK32
    text = str(seed).strip()
    try:
        return int(float(text)) & _MASK32
    except ValueError:
        return hash_seed(text)


class SeededRng:
    """Deterministic mulberry32 stream; identical seeds give identical draws."""

    def __init__(self, seed: Union[int, float, str]) -> None:
        self.seed = seed_to_int(seed)
        self._state = self.seed

    def random(self) -> float:
        self._state = (self._state + _MULBERRY_INCREMENT) & _MASK32
        x = self._state
        x = _imul(x ^ (x >> 15), x | 1)
        x ^= (x + _imul(x ^ (x >> 7), x | 61)) & _MASK32
        x &= _MASK32
        return ((x ^ (x >> 14)) & _MASK32) / 4294967296.0


class PlatformRng:
    def __init__(self, generator: Optional[np.random.Generator] = None) -> None:
        self._generator = generator or np.random.default_rng()

    def random(self) -> float:
        return float(self._generator.random())


def make_rng(seed: Optional[Union[int, float, str]] = None) -> Rng:
    if seed is None or (isinstance(seed, str) and not seed.strip()):
        return PlatformRng()
    return SeededRng(seed)
