from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

from ..errors import InvalidKeyData
from ..tables import is_wire

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 256

RandomSource = Callable[[int], bytes]

_WHITESPACE = b" \t\r\n"
_DIGITS_RE = re.compile(r"(\d+)")


def normalize_symbols(data: Union[str, bytes]) -> bytes:
    """Return key material as A-Z bytes, dropping whitespace used for grouping."""
    if isinstance(data, str):
        data = data.encode("ascii", errors="replace")
    data = bytes(b for b in data if b not in _WHITESPACE)
    if not is_wire(data):
        raise InvalidKeyData("invalid key data, only A-Z allowed")
    return data


def natural_key(name: str) -> list[tuple[int, int, str]]:
    """Sort key placing "key2" before "key10"; numbers sort before text."""
    text = " ".join(name.split()).lower()
    parts = []
    for tok in _DIGITS_RE.split(text):
        if not tok:
            continue
        if tok.isdigit():
            parts.append((0, int(tok), ""))
        else:
            parts.append((1, 0, tok))
    return parts


def natural_sorted(names) -> list[str]:
    return sorted(names, key=lambda n: (natural_key(n), n))


class Key(ABC):
    """A stream of one-time-pad symbols."""

    name: str

    @property
    @abstractmethod
    def bytes_left(self) -> int:
        ...

    @abstractmethod
    def read(self, n: int) -> bytes:
        """Consume and return up to n symbols."""

    def close(self) -> None:
        pass


class SymbolKey(Key):
    """Key whose whole material is held in memory.

    on_close is called once, the first time the key is closed; stores use it
    to destroy used key material.
    """

    def __init__(
        self,
        name: str,
        symbols: bytes,
        on_close: Optional[Callable[["SymbolKey"], None]] = None,
    ) -> None:
        self.name = name
        self._buf = memoryview(bytes(symbols))
        self._on_close = on_close
        self.closed = False

    @property
    def bytes_left(self) -> int:
        return len(self._buf)

    def read(self, n: int) -> bytes:
        if self.closed:
            raise ValueError(f"key {self.name!r} is closed")
        out = bytes(self._buf[:n])
        self._buf = self._buf[len(out) :]
        return out

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._buf = memoryview(b"")
        if self._on_close is not None:
            self._on_close(self)

    def __repr__(self) -> str:
        return f"SymbolKey(name={self.name!r}, bytes_left={self.bytes_left})"


class KeyStore(ABC):
    """Source of named one-time-pad keys."""

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    @abstractmethod
    def next_key(self) -> Key:
        """Allocate the next unused key without opening it.

        Raises KeyExhausted when the store is empty.
        """

    @abstractmethod
    def open_key(self, name: str) -> Key:
        """Open a key by name. Raises KeyNotFound for unknown names."""

    @abstractmethod
    def generate(self, name: str, size: int, random_source: Optional[RandomSource] = None) -> None:
        ...

    def __enter__(self) -> "KeyStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
