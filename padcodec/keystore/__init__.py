"""Key store interface and backends."""

from __future__ import annotations

from .base import DEFAULT_KEY_SIZE, Key, KeyStore, SymbolKey, natural_sorted
from .keydir import KeyDir
from .keygen import generate_symbols, random_source_for
from .memory import DummyKeyStore, MemoryKeyStore, SeededKeyStore

__all__ = [
    "DEFAULT_KEY_SIZE",
    "DummyKeyStore",
    "Key",
    "KeyDir",
    "KeyStore",
    "MemoryKeyStore",
    "SeededKeyStore",
    "SymbolKey",
    "generate_symbols",
    "natural_sorted",
    "random_source_for",
]
