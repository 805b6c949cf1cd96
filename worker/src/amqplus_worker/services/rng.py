"""Seeded pseudo-random helpers shared by the resolver and the sampler.

The generator is a 31-bit linear congruential generator seeded from a
Java-style 32-bit string hash:

    state_0 = abs(int32(h)), h = h * 31 + code_unit   (UTF-16 code units)
    state_n = (state_{n-1} * 1103515245 + 12345) mod 2**31
    output  = state_n / 2**31

All arithmetic is exact integer arithmetic, so any implementation following
the formulas above reproduces the same stream. Each call to ``make_rng``
returns an independent generator; nothing is shared at module level.
"""

from __future__ import annotations

import secrets
import string
from typing import Callable, List, MutableSequence, TypeVar

Rng = Callable[[], float]

T = TypeVar("T")

_MODULUS = 1 << 31
_MULTIPLIER = 1103515245
_INCREMENT = 12345
_SEED_ALPHABET = string.ascii_letters
SEED_LENGTH = 16


def hash_seed(seed: str) -> int:
    value = 0
    encoded = seed.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + code_unit) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return abs(value)


def make_rng(seed: str) -> Rng:
    """Return a restartable generator of floats in ``[0, 1)`` for ``seed``."""
    state = hash_seed(seed) % _MODULUS

    def _next() -> float:
        nonlocal state
        state = (state * _MULTIPLIER + _INCREMENT) % _MODULUS
        return state / _MODULUS

    return _next


def random_int(rng: Rng, low: float, high: float) -> int:
    """Uniform integer in ``[ceil(low), floor(high)]``; degenerate spans return the low end."""
    lo = int(-(-low // 1))
    hi = int(high // 1)
    if hi <= lo:
        return lo
    return lo + int(rng() * (hi - lo + 1))


def shuffle_in_place(items: MutableSequence[T], rng: Rng) -> MutableSequence[T]:
    for index in range(len(items) - 1, 0, -1):
        swap = int(rng() * (index + 1))
        items[index], items[swap] = items[swap], items[index]
    return items


def shuffled(items: List[T], rng: Rng) -> List[T]:
    copy = list(items)
    shuffle_in_place(copy, rng)
    return copy


def generate_seed() -> str:
    return "".join(secrets.choice(_SEED_ALPHABET) for _ in range(SEED_LENGTH))
