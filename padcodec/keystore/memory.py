"""In-memory key stores used by tests and demonstrations."""

from __future__ import annotations

import logging
import random
from typing import Mapping, Optional, Union

from ..errors import KeyExhausted, KeyNotFound
from .base import (
    DEFAULT_KEY_SIZE,
    KeyStore,
    RandomSource,
    SymbolKey,
    natural_sorted,
    normalize_symbols,
)
from .keygen import generate_symbols

logger = logging.getLogger(__name__)


class MemoryKeyStore(KeyStore):
    """Named keys held in a dict, allocated in natural name order."""

    def __init__(self, keys: Optional[Mapping[str, Union[str, bytes]]] = None) -> None:
        self._keys: dict[str, bytes] = {}
        self._allocated: set[str] = set()
        for name, symbols in (keys or {}).items():
            self.add(name, symbols)

    def add(self, name: str, symbols: Union[str, bytes]) -> None:
        self._keys[name] = normalize_symbols(symbols)

    def names(self):
        return natural_sorted(self._keys)

    def available(self):
        return [n for n in self.names() if n not in self._allocated]

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def next_key(self) -> SymbolKey:
        available = self.available()
        if not available:
            raise KeyExhausted("no more keys available")
        name = available[0]
        self._allocated.add(name)
        logger.debug(f"Allocated key {name!r}")
        return SymbolKey(name, self._keys[name])

    def open_key(self, name: str) -> SymbolKey:
        if name not in self._keys:
            raise KeyNotFound(name)
        self._allocated.add(name)
        return SymbolKey(name, self._keys[name])

    def generate(self, name: str, size: int, random_source: Optional[RandomSource] = None) -> None:
        if name in self._keys:
            raise FileExistsError(f"key {name!r} already exists")
        self._keys[name] = generate_symbols(size, random_source)


class SeededKeyStore(KeyStore):
    """Deterministic keys "0", "1", ... derived from a seed.

    Two stores with the same seed and key size hold identical keys, which is
    what a sender and a receiver need in tests. Never use it for real traffic.
    """

    def __init__(self, seed: int = 0, key_size: int = DEFAULT_KEY_SIZE) -> None:
        self.seed = seed
        self.key_size = key_size
        self._next = 0

    def _material(self, index: int) -> bytes:
        rng = random.Random(f"{self.seed}/{index}")
        return generate_symbols(self.key_size, rng.randbytes)

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def next_key(self) -> SymbolKey:
        index = self._next
        self._next += 1
        return SymbolKey(str(index), self._material(index))

    def open_key(self, name: str) -> SymbolKey:
        if not name.isdigit():
            raise KeyNotFound(name)
        index = int(name)
        self._next = index + 1
        return SymbolKey(name, self._material(index))

    def generate(self, name: str, size: int, random_source: Optional[RandomSource] = None) -> None:
        # Keys are derived from the seed, there is nothing to store.
        pass


class DummyKeyStore(KeyStore):
    """Every key is key_size copies of key_char; "A" turns the cipher into the identity."""

    NAME = "DUMMY"

    def __init__(self, key_char: str = "A", key_size: int = DEFAULT_KEY_SIZE) -> None:
        self.key_char = normalize_symbols(key_char)
        if len(self.key_char) != 1:
            raise ValueError("key_char must be a single letter A-Z")
        self.key_size = key_size

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def next_key(self) -> SymbolKey:
        return SymbolKey(self.NAME, self.key_char * self.key_size)

    def open_key(self, name: str) -> SymbolKey:
        return SymbolKey(self.NAME, self.key_char * self.key_size)

    def generate(self, name: str, size: int, random_source: Optional[RandomSource] = None) -> None:
        pass
