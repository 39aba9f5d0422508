from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from .cipher import Decrypter, Encrypter
from .decoder import Decoder
from .encoder import RESERVED_KEY_LEN, Encoder
from .keystore.base import KeyStore
from .tables import format_groups

Payload = Union[str, bytes]


@dataclass
class DecodedMessage:
    content: bytes
    header: dict[str, str] = field(default_factory=dict)
    # None when the message carried no checksum
    checksum_ok: Optional[bool] = None
    errors: list[Exception] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def _payloads(messages: Union[Payload, Iterable[Payload]]) -> list[Payload]:
    if isinstance(messages, (str, bytes, bytearray)):
        return [messages]
    return list(messages)


def encode(
    messages: Union[Payload, Iterable[Payload]],
    store: Optional[KeyStore] = None,
    *,
    crc: bool = False,
    content_type: Optional[str] = None,
    filename: Optional[str] = None,
    group: bool = False,
    no_end_markers: bool = False,
    reserved_key_len: int = RESERVED_KEY_LEN,
) -> str:
    """Encode one message (or several) into a single A-Z transmission.

    With a store the transmission is enciphered with its keys; the store must
    already be open. group=True returns space separated 5-letter groups.
    """
    out = io.BytesIO()
    cipher = Encrypter(store) if store is not None else None
    enc = Encoder(out, cipher, no_end_markers=no_end_markers, reserved_key_len=reserved_key_len)
    try:
        for payload in _payloads(messages):
            msg = enc.new_message()
            if crc:
                msg.with_crc32()
            if content_type:
                msg.with_content_type(content_type)
            if filename:
                msg.with_filename(filename)
            if isinstance(payload, str):
                msg.write_string(payload)
            else:
                msg.write(payload)
            msg.close()
        enc.close()
    finally:
        if cipher is not None:
            cipher.close()
    text = out.getvalue().decode("ascii")
    if not group:
        return text
    # Padding is only safe once end-of-transmission has been sent
    return format_groups(text, pad="" if no_end_markers else "Z")


def decode(text: Union[str, bytes], store: Optional[KeyStore] = None) -> list[DecodedMessage]:
    """Decode a transmission (grouped or not) into its messages."""
    cipher = Decrypter(store) if store is not None else None
    dec = Decoder(cipher)
    try:
        dec.write(text)
        dec.close()
    finally:
        if cipher is not None:
            cipher.close()
    return [
        DecodedMessage(
            content=msg.read(),
            header=dict(msg.header),
            checksum_ok=msg.verify_checksum() if msg.has_checksum() else None,
            errors=list(msg.errors),
        )
        for msg in dec.messages
    ]
