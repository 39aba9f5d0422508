from __future__ import annotations


class PadCodecError(Exception):
    """Base class for all padcodec errors."""


class KeyStoreError(PadCodecError):
    """Raised by key store backends."""


class KeyExhausted(KeyStoreError):
    """Raised when a store has no more keys to hand out."""


class KeyNotFound(KeyStoreError):
    def __init__(self, name: str) -> None:
        super().__init__(f"key not found: {name!r}")
        self.name = name


class InvalidKeyData(KeyStoreError):
    """Raised when key material contains symbols outside A-Z."""


class StoreNotOpen(KeyStoreError):
    """Raised when a key store is used before open() or after close()."""


class CodecError(PadCodecError, ValueError):
    """Protocol level error while encoding or decoding a stream."""


class MalformedHexEscape(CodecError):
    """Raised for a dangling nibble or a non-nibble data symbol in hex mode."""


class HeaderParseError(CodecError):
    """Raised when header text does not split into key/value pairs."""


class UnmappedSymbolError(CodecError, LookupError):
    """Raised when a table slot without a character is looked up."""


class KeyAnnouncementTooLong(CodecError):
    def __init__(self, name: str, length: int, reserved: int) -> None:
        super().__init__(
            f"announcement of key {name!r} needs {length} symbols, only {reserved} reserved"
        )
        self.name = name
        self.length = length
        self.reserved = reserved


class MaxOneMessage(CodecError):
    """Raised when a second message is created without end markers."""


class SealError(PadCodecError, ValueError):
    """Raised when a sealed key file cannot be opened."""
