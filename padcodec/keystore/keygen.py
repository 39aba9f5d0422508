from __future__ import annotations

import os
import random
from typing import Optional

from ..tables import ALPHABET_SIZE, FIRST
from .base import RandomSource

# Largest multiple of 26 that fits in a byte; values above are rejected so
# every letter is equally likely.
_LIMIT = 256 - 256 % ALPHABET_SIZE

SOURCES = ("system", "mt")


def generate_symbols(size: int, random_source: Optional[RandomSource] = None) -> bytes:
    """Return size uniformly distributed A-Z symbols drawn from random_source."""
    if size < 0:
        raise ValueError("key size must not be negative")
    if random_source is None:
        random_source = os.urandom
    out = bytearray()
    while len(out) < size:
        chunk = random_source(max(64, size - len(out)))
        if not chunk:
            raise ValueError("random source returned no data")
        for b in chunk:
            if b < _LIMIT:
                out.append(FIRST + b % ALPHABET_SIZE)
                if len(out) == size:
                    break
    return bytes(out)


def random_source_for(name: str, seed=None) -> RandomSource:
    """Map a source name to a byte source.

    "system" is the operating system CSPRNG, "mt" is a Mersenne Twister and
    only fit for tests and demonstrations.
    """
    if name in ("system", "default"):
        return os.urandom
    if name == "mt":
        return random.Random(seed).randbytes
    raise ValueError(f"unknown random source: {name}")
