"""
One-time-pad keystream cipher over the A-Z alphabet.

    cipher = ((plain - A) + (key - A)) mod 26 + A
    plain  = ((cipher - A) - (key - A)) mod 26 + A

Every symbol written consumes exactly one key symbol. Transformed symbols are
queued in a FIFO and read back separately from the writes.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import KeyStoreError
from .keystore.base import Key, KeyStore
from .tables import ALPHABET_SIZE, FIRST

logger = logging.getLogger(__name__)


def encrypt_symbol(plain: int, key: int) -> int:
    return ((plain - FIRST) + (key - FIRST)) % ALPHABET_SIZE + FIRST


def decrypt_symbol(cipher: int, key: int) -> int:
    return ((cipher - FIRST) - (key - FIRST)) % ALPHABET_SIZE + FIRST


class KeystreamCipher:
    """Applies the keystream of the current key to written symbols.

    The cipher owns its current key exclusively. Opening another key closes
    the previous one, which lets the store destroy used key material.
    """

    def __init__(self, store: KeyStore, *, encrypting: bool = True) -> None:
        self.store = store
        self.encrypting = encrypting
        self._key: Optional[Key] = None
        self._fifo = bytearray()
        self.closed = False

    @property
    def key(self) -> Optional[Key]:
        return self._key

    def next_key(self) -> Key:
        """Allocate the store's next key. The current key stays in use."""
        key = self.store.next_key()
        logger.debug(f"Next key is {key.name!r} ({key.bytes_left} symbols)")
        return key

    def open_key(self, name: str) -> Key:
        """Close the current key and make the named key current."""
        key = self.store.open_key(name)
        if self._key is not None and self._key is not key:
            self._key.close()
        self._key = key
        logger.debug(f"Opened key {name!r} ({key.bytes_left} symbols)")
        return key

    def close_key(self) -> None:
        if self._key is not None:
            self._key.close()
            self._key = None

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("cipher is closed")
        if not data:
            return 0
        assert self._key is not None, "no key open"
        assert len(data) <= self._key.bytes_left, (
            f"write of {len(data)} symbols exceeds the {self._key.bytes_left} left in key {self._key.name!r}"
        )
        keystream = self._key.read(len(data))
        if len(keystream) != len(data):
            raise KeyStoreError(f"short read from key {self._key.name!r}")
        op = encrypt_symbol if self.encrypting else decrypt_symbol
        self._fifo.extend(op(p, k) for p, k in zip(data, keystream))
        return len(data)

    def read(self, n: int = -1) -> bytes:
        if n < 0 or n >= len(self._fifo):
            out = bytes(self._fifo)
            self._fifo.clear()
            return out
        out = bytes(self._fifo[:n])
        del self._fifo[:n]
        return out

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._fifo.clear()
        self.close_key()


class Encrypter(KeystreamCipher):
    def __init__(self, store: KeyStore) -> None:
        super().__init__(store, encrypting=True)


class Decrypter(KeystreamCipher):
    def __init__(self, store: KeyStore) -> None:
        super().__init__(store, encrypting=False)
