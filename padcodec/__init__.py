"""One-time-pad message codec producing A-Z only streams."""

from __future__ import annotations

from .cipher import Decrypter, Encrypter, KeystreamCipher
from .core import DecodedMessage, decode, encode
from .decoder import Decoder, ReceivedMessage
from .encoder import RESERVED_KEY_LEN, Encoder, MessageWriter, announcement_length
from .errors import (
    CodecError,
    HeaderParseError,
    KeyAnnouncementTooLong,
    KeyExhausted,
    KeyNotFound,
    KeyStoreError,
    MalformedHexEscape,
    MaxOneMessage,
    PadCodecError,
)
from .header import Header
from .state import CodecState

__version__ = "0.1.0"

__all__ = [
    "CodecError",
    "CodecState",
    "DecodedMessage",
    "Decoder",
    "Decrypter",
    "Encoder",
    "Encrypter",
    "Header",
    "HeaderParseError",
    "KeyAnnouncementTooLong",
    "KeyExhausted",
    "KeyNotFound",
    "KeyStoreError",
    "KeystreamCipher",
    "MalformedHexEscape",
    "MaxOneMessage",
    "MessageWriter",
    "PadCodecError",
    "RESERVED_KEY_LEN",
    "ReceivedMessage",
    "announcement_length",
    "decode",
    "encode",
]
