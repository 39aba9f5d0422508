"""
Stream decoder.

Bytes outside A-Z (spaces between groups, line breaks) are ignored, so the
decoder accepts grouped text exactly as it was copied down. Decoded messages
are published in arrival order, before their content, through the
``messages`` list and the optional ``on_message`` callback; content can be
read from a message while it is still being received.
"""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import replace
from typing import Callable, Optional, Union

from .cipher import KeystreamCipher
from .errors import HeaderParseError, KeyExhausted, MalformedHexEscape
from .header import HEADER_CONTENT_TYPE, HEADER_FILENAME, Header, is_text_content_type
from .state import INITIAL
from .tables import (
    BELL,
    END_OF_MESSAGE,
    END_OF_TRANSMISSION,
    FIRST,
    HEX_MODE,
    KEY_MODE,
    NEWLINE,
    RESERVED,
    SECTION_CHECKSUM,
    SECTION_DEFAULT,
    SECTION_HEADER,
    SECTION_SELECT,
    SHIFT_MODE,
    SWITCH_TABLE,
    TAB,
    decode_symbol,
    is_letter,
    is_nibble,
)

logger = logging.getLogger(__name__)


class ReceivedMessage:
    """A message as it is being received.

    Content of the default section is buffered until read. Header and
    checksum sections are kept separately and never show up in read().
    """

    def __init__(self) -> None:
        self.header = Header()
        self.errors: list[Exception] = []
        self.closed = False
        self._content = bytearray()
        self._sections = {}
        self._section = SECTION_DEFAULT
        self._section_mode = False
        self._crc = 0
        self._has_header = False

    def read(self, size: int = -1) -> bytes:
        """Return up to size bytes of received content (all of it by default)."""
        if size is None or size < 0 or size >= len(self._content):
            out = bytes(self._content)
            self._content.clear()
            return out
        out = bytes(self._content[:size])
        del self._content[:size]
        return out

    def has_header(self) -> bool:
        return self._has_header

    def has_checksum(self) -> bool:
        return len(self._sections.get(SECTION_CHECKSUM, b"")) > 0

    def checksum(self) -> int:
        """CRC-32 of the content received so far."""
        return self._crc & 0xFFFFFFFF

    def verify_checksum(self) -> bool:
        """True if the message carried a checksum equal to the received content's."""
        if not self.has_checksum():
            return False
        return bytes(self._sections[SECTION_CHECKSUM]) == struct.pack(">I", self.checksum())

    @property
    def content_type(self) -> Optional[str]:
        return self.header.get(HEADER_CONTENT_TYPE)

    @property
    def filename(self) -> Optional[str]:
        return self.header.get(HEADER_FILENAME)

    def is_text(self) -> bool:
        return is_text_content_type(self.content_type)

    def _append(self, data: bytes) -> None:
        if self._section == SECTION_DEFAULT:
            self._content += data
            self._crc = zlib.crc32(data, self._crc)
        else:
            self._sections.setdefault(self._section, bytearray()).extend(data)

    def _select_section(self) -> None:
        if self._section != SECTION_DEFAULT:
            self._close_section()
        else:
            self._section_mode = True

    def _set_section(self, section: int) -> None:
        self._section_mode = False
        self._section = section
        self._sections[section] = bytearray()

    def _close_section(self) -> None:
        section, self._section = self._section, SECTION_DEFAULT
        if section != SECTION_HEADER:
            return
        self._has_header = True
        text = bytes(self._sections.pop(SECTION_HEADER, b"")).decode("utf-8", errors="replace")
        try:
            self.header.parse(text)
        except HeaderParseError as e:
            logger.warning(f"Malformed message header {text!r}: {e}")
            self.errors.append(e)

    def _close(self) -> None:
        if self.closed:
            return
        if self._section != SECTION_DEFAULT:
            self._close_section()
        self._section_mode = False
        self.closed = True

    def __repr__(self) -> str:
        return (
            f"ReceivedMessage(header={dict(self.header)!r}, pending={len(self._content)}, "
            f"closed={self.closed})"
        )


class Decoder:
    """Turns an A-Z stream back into messages.

    With a cipher, key names announced in the stream are opened on it and
    every following symbol is deciphered before it is interpreted.
    """

    def __init__(
        self,
        cipher: Optional[KeystreamCipher] = None,
        *,
        on_message: Optional[Callable[[ReceivedMessage], None]] = None,
    ) -> None:
        self._cipher = cipher
        self._on_message = on_message
        self._state = INITIAL
        self._key_mode = False
        self._key_buf = bytearray()
        self._key_nibble: Optional[int] = None
        self._nibble: Optional[int] = None
        self._key_open = False
        self._current: Optional[ReceivedMessage] = None
        self.messages: list[ReceivedMessage] = []
        self.key_names: list[str] = []
        self.closed = False

    @property
    def state(self):
        return self._state

    def write(self, data: Union[bytes, str]) -> int:
        if self.closed:
            raise ValueError("decoder is closed")
        if isinstance(data, str):
            data = data.encode("utf-8")
        for b in data:
            if not is_letter(b):
                continue
            if self._key_open:
                b = self._decrypt(b)
            if self._feed(b):
                # nothing after end-of-transmission belongs to it
                break
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._close_message()

    def __enter__(self) -> "Decoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _decrypt(self, b: int) -> int:
        key = self._cipher.key
        if key is None or key.bytes_left == 0:
            raise KeyExhausted(f"stream runs past the end of key {key.name if key else None!r}")
        self._cipher.write(bytes([b]))
        return self._cipher.read(1)[0]

    def _feed(self, b: int) -> bool:
        """Interpret one plain symbol. Returns True at end-of-transmission."""
        msg = self._current
        if msg is not None and msg._section_mode:
            msg._set_section(b)
            return False

        st = self._state
        if st.hex and is_nibble(b):
            self._append_nibble(b - FIRST)
            return False

        if b == SWITCH_TABLE:
            self._state = replace(st, alt=not st.alt)
            return False

        if st.alt:
            if b == HEX_MODE:
                self._state = replace(st, hex=not st.hex)
                return False
            if b == SHIFT_MODE:
                self._state = replace(st, shift=not st.shift)
                return False
            if b == KEY_MODE:
                self._toggle_key_mode()
                return False
            if st.shift:
                if b == SECTION_SELECT:
                    self._message()._select_section()
                    return False
                if b == BELL:
                    self._append(b"\a")
                    return False
                if b == TAB:
                    self._append(b"\t")
                    return False
                if b == END_OF_MESSAGE:
                    self._message()
                    self._close_message()
                    return False
                if b == END_OF_TRANSMISSION:
                    self._end_of_transmission()
                    return True
                if b in RESERVED:
                    return False
        elif st.shift and b == NEWLINE:
            self._append(b"\n")
            return False

        if st.hex:
            self._malformed_hex(b)
        self._append(decode_symbol(st.alt, st.shift, b).encode("utf-8"))
        return False

    def _message(self) -> ReceivedMessage:
        if self._current is None:
            msg = ReceivedMessage()
            self._current = msg
            self.messages.append(msg)
            logger.debug(f"Receiving message #{len(self.messages)}")
            if self._on_message is not None:
                self._on_message(msg)
        return self._current

    def _append(self, data: bytes) -> None:
        if self._key_mode:
            self._key_buf += data
        else:
            self._message()._append(data)

    def _append_nibble(self, n: int) -> None:
        pending = self._key_nibble if self._key_mode else self._nibble
        if pending is None:
            pending, complete = n, None
        else:
            pending, complete = None, bytes([(pending << 4) | n])
        if self._key_mode:
            self._key_nibble = pending
        else:
            self._nibble = pending
        if complete is not None:
            self._append(complete)

    def _toggle_key_mode(self) -> None:
        self._key_mode = not self._key_mode
        if self._key_mode:
            self._key_buf.clear()
            self._key_nibble = None
            return
        name = self._key_buf.decode("utf-8", errors="replace")
        self._key_buf.clear()
        self.key_names.append(name)
        if self._cipher is None:
            logger.warning(f"Key {name!r} announced but no key store to open it from")
            return
        self._cipher.open_key(name)
        self._key_open = True
        logger.debug(f"Switched to key {name!r}")

    def _close_message(self) -> None:
        msg, self._current = self._current, None
        if msg is None:
            return
        if self._nibble is not None:
            err = MalformedHexEscape("message ended in the middle of a hex escape")
            logger.warning(f"{err}, dropping the dangling nibble")
            msg.errors.append(err)
            self._nibble = None
        msg._close()

    def _malformed_hex(self, b: int) -> None:
        err = MalformedHexEscape(f"symbol {chr(b)} is not a hex nibble")
        if self._current is not None:
            self._current.errors.append(err)
        self._nibble = None
        self._close_message()
        raise err

    def _end_of_transmission(self) -> None:
        self._close_message()
        self._state = INITIAL
        self._key_mode = False
        self._key_buf.clear()
        self._key_nibble = None
        if self._cipher is not None and self._key_open:
            self._cipher.close_key()
        self._key_open = False
        logger.debug("End of transmission")
