from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional, Union

from .. import sealing
from ..errors import KeyExhausted, KeyNotFound, KeyStoreError, StoreNotOpen
from .base import KeyStore, RandomSource, SymbolKey, natural_sorted, normalize_symbols
from .keygen import generate_symbols

logger = logging.getLogger(__name__)

KEY_EXT = ".key"

# Key names are announced in-band, so keep them to characters the tables
# carry without a hex escape.
KEY_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9.\-]*")

BOMS = (
    b"\x00\x00\xfe\xff",  # UTF-32 (BE)
    b"\xff\xfe\x00\x00",  # UTF-32 (LE)
    b"\xdd\x73\x66\x73",  # UTF-EBCDIC
    b"\x84\x31\x95\x33",  # GB-18030
    b"\xef\xbb\xbf",  # UTF-8
    b"\x2b\x2f\x76",  # UTF-7
    b"\xf7\x64\x4c",  # UTF-1
    b"\x0e\xfe\xff",  # SCSU
    b"\xfb\xee\x28",  # BOCU-1
    b"\xfe\xff",  # UTF-16 (BE)
    b"\xff\xfe",  # UTF-16 (LE)
)


def strip_bom(data: bytes) -> bytes:
    for bom in BOMS:
        if data.startswith(bom):
            return data[len(bom) :]
    return data


def validate_key_name(name: str) -> str:
    if not KEY_NAME_RE.fullmatch(name or ""):
        raise ValueError(f"invalid key name: {name!r}")
    return name


class KeyDir(KeyStore):
    """
    Directory of key files, one "<name>.key" file per key.

    Keys are handed out in natural name order. A key opened through open_key
    is burned (overwritten with zeros and removed) when it is closed, either
    explicitly, by opening the next key or by closing the store, so no key is
    ever used twice.

    With a passphrase, generated key files are sealed at rest and sealed
    files are unsealed when read. Plain files are still accepted.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        passphrase: Optional[str] = None,
        scrypt_strength: Optional[str] = None,
        burn: bool = True,
    ) -> None:
        self.path = Path(path)
        self.passphrase = passphrase
        self.scrypt_strength = scrypt_strength
        self.burn = burn
        self._is_open = False
        self._used: set[str] = set()
        self._open_key: Optional[SymbolKey] = None

    def _key_path(self, name: str) -> Path:
        return self.path / (name + KEY_EXT)

    def _require_open(self) -> None:
        if not self._is_open:
            raise StoreNotOpen(f"key directory {self.path} is not open")

    def open(self) -> None:
        if not self.path.exists():
            raise KeyStoreError(f"error locating directory: {self.path}")
        if not self.path.is_dir():
            raise KeyStoreError(f"not a directory: {self.path}")
        self._is_open = True
        logger.info(f"Opened key directory {self.path} ({len(self.names())} keys)")

    def close(self) -> None:
        if self._open_key is not None:
            self._open_key.close()
            self._open_key = None
        self._is_open = False

    def names(self) -> list[str]:
        """Names of all key files currently in the directory."""
        names = [
            p.name[: -len(KEY_EXT)]
            for p in self.path.iterdir()
            if p.is_file() and p.name.endswith(KEY_EXT)
        ]
        return natural_sorted(names)

    def available(self) -> list[str]:
        return [n for n in self.names() if n not in self._used]

    def _load(self, name: str) -> bytes:
        fn = self._key_path(name)
        try:
            raw = fn.read_bytes()
        except FileNotFoundError:
            raise KeyNotFound(name)
        raw = strip_bom(raw)
        if sealing.is_sealed(raw):
            if not self.passphrase:
                raise KeyStoreError(f"key {name!r} is sealed and no passphrase was given")
            raw = sealing.unseal(raw, self.passphrase, aad=name.encode("utf-8"))
        return normalize_symbols(raw)

    def _burn(self, key: SymbolKey) -> None:
        if not self.burn:
            return
        fn = self._key_path(key.name)
        try:
            size = fn.stat().st_size
            with open(fn, "r+b") as f:
                f.write(b"\x00" * size)
                f.flush()
                os.fsync(f.fileno())
            fn.unlink()
        except FileNotFoundError:
            return
        logger.debug(f"Burned used key {key.name!r}")

    def next_key(self) -> SymbolKey:
        self._require_open()
        available = self.available()
        if not available:
            raise KeyExhausted("no more keys available")
        name = available[0]
        self._used.add(name)
        logger.debug(f"Allocated key {name!r}")
        return SymbolKey(name, self._load(name))

    def open_key(self, name: str) -> SymbolKey:
        self._require_open()
        if name not in self.names():
            raise KeyNotFound(name)
        symbols = self._load(name)
        if self._open_key is not None:
            self._open_key.close()
        self._used.add(name)
        self._open_key = SymbolKey(name, symbols, on_close=self._burn)
        return self._open_key

    def generate(self, name: str, size: int, random_source: Optional[RandomSource] = None) -> None:
        self._require_open()
        validate_key_name(name)
        fn = self._key_path(name)
        if fn.exists():
            raise FileExistsError(f"key file already exists: {fn}")
        data = generate_symbols(size, random_source)
        if self.passphrase:
            data = sealing.seal(
                data,
                self.passphrase,
                aad=name.encode("utf-8"),
                scrypt_strength=self.scrypt_strength,
            )
        with open(fn, "xb") as f:
            f.write(data)
        logger.info(f"Generated key {name!r} ({size} symbols) in {self.path}")
