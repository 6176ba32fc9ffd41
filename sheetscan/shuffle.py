"""
Seeded permutation engine.

Every shuffle in the system (item order per row, alternative order per item)
goes through ``permute``. Print-time generation and scan-time replay never
share state; they only share this function, so its output must stay stable
across processes, platforms and releases. The arithmetic reproduces the
32-bit integer semantics of the web client's shuffle, so both produce the
same order for the same material. The web client does not balance answer
positions: its sheets replay here only with ``balance_answers=False``.
"""
from __future__ import annotations

from typing import Iterator, List, Sequence, TypeVar

T = TypeVar("T")

_MASK32 = 0xFFFFFFFF
_GOLDEN_STEP = 0x6D2B79F5
SEED_SEPARATOR = "-"


def _to_int32(value: int) -> int:
    value &= _MASK32
    return value - 0x100000000 if value & 0x80000000 else value


def string_hash(text: str) -> int:
    """
    31-multiplier rolling hash wrapped to a signed 32-bit integer.
    Iterates UTF-16 code units so non-BMP characters hash as surrogate pairs.
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32(h * 31 + unit)
    return h


def mulberry32(seed: int) -> Iterator[float]:
    """Yield floats in [0, 1) from a Mulberry32 generator seeded with ``seed``."""
    state = seed & _MASK32
    while True:
        state = (state + _GOLDEN_STEP) & _MASK32
        t = state
        t = ((t ^ (t >> 15)) * (t | 1)) & _MASK32
        t ^= (t + (((t ^ (t >> 7)) * (t | 61)) & _MASK32)) & _MASK32
        yield ((t ^ (t >> 14)) & _MASK32) / 4294967296.0


def seed_material(*parts: object) -> str:
    """Join seed components (base seed, row label, item id...) into one key."""
    return SEED_SEPARATOR.join(str(part) for part in parts)


def permute(material: str, items: Sequence[T]) -> List[T]:
    """
    Fisher-Yates shuffle driven by ``mulberry32(string_hash(material))``.
    Returns a new list; ``items`` is left untouched.
    """
    random = mulberry32(string_hash(material))
    shuffled = list(items)
    current = len(shuffled)
    while current != 0:
        pick = int(next(random) * current)
        current -= 1
        shuffled[current], shuffled[pick] = shuffled[pick], shuffled[current]
    return shuffled
