"""
Message encoder.

Payload is turned into A-Z symbols with the character tables (text path) or
as two A-P nibbles per byte (hex path), framed into messages and, when a
cipher is given, enciphered with one-time-pad keys from its store.

Key handling: the first key name is written in clear inside Y ... Y so the
receiver knows which key to open. When the open key has only the reserved
number of symbols left, the name of the next key is announced encrypted with
the old key, the next key is opened and the symbols needed to bring the
receiver back to the pre-announcement state are prepended to the rest of the
payload.
"""

from __future__ import annotations

import logging
import struct
import zlib
from typing import BinaryIO, Optional

from .cipher import KeystreamCipher
from .errors import KeyAnnouncementTooLong, KeyStoreError, MaxOneMessage
from .header import HEADER_CONTENT_TYPE, HEADER_FILENAME, Header, is_text_content_type
from .keystore.base import Key
from .state import ALT_SHIFT, INITIAL, CodecState
from .tables import (
    BELL,
    END_OF_MESSAGE,
    END_OF_TRANSMISSION,
    FIRST,
    KEY_MODE,
    NEWLINE,
    SECTION_CHECKSUM,
    SECTION_DEFAULT,
    SECTION_HEADER,
    SECTION_SELECT,
    TAB,
    encode_hex,
    locate,
)

logger = logging.getLogger(__name__)

# Symbols kept back in every key to announce the next key under it.
RESERVED_KEY_LEN = 16
MIN_RESERVED_KEY_LEN = 4

_CONTROL_CHARS = {
    "\n": (CodecState(shift=True), NEWLINE),
    "\a": (ALT_SHIFT, BELL),
    "\t": (ALT_SHIFT, TAB),
}


def encode_text(state: CodecState, text: str) -> tuple[CodecState, bytes]:
    """Encode text starting in state; return the final state and the symbols.

    Characters found in a table cost one symbol plus whatever control letters
    the table change needs. Anything else is escaped as its UTF-8 bytes in
    hex mode (surrogate escapes stand for the raw byte they replaced).
    """
    out = bytearray()
    for ch in text:
        loc = locate(ch)
        if loc is not None:
            alt, shift, idx = loc
            state, ctl = state.transition(CodecState(alt, shift, False))
            out += ctl
            out.append(FIRST + idx)
            continue
        if ch in _CONTROL_CHARS:
            desired, letter = _CONTROL_CHARS[ch]
            state, ctl = state.transition(desired)
            out += ctl
            out.append(letter)
            continue
        state, ctl = state.transition(CodecState(True, state.shift, True))
        out += ctl
        out += encode_hex(ch.encode("utf-8", errors="surrogateescape"))
    return state, bytes(out)


def key_announcement(state: CodecState, name: str) -> tuple[CodecState, bytes]:
    """Symbols announcing a key name: Y, the name as text, Y (both Y in alt)."""
    state, out = state.transition(CodecState(True, state.shift, False))
    buf = bytearray(out)
    buf.append(KEY_MODE)
    state, name_symbols = encode_text(state, name)
    buf += name_symbols
    state, ctl = state.transition(CodecState(True, state.shift, False))
    buf += ctl
    buf.append(KEY_MODE)
    return state, bytes(buf)


def announcement_length(name: str) -> int:
    """Worst case number of symbols needed to announce name from any state."""
    return max(
        len(key_announcement(CodecState(alt, shift, hex_), name)[1])
        for alt in (False, True)
        for shift in (False, True)
        for hex_ in (False, True)
    )


class Encoder:
    """Encodes messages into an A-Z stream written to out.

    out is any object with a write(bytes) method. Messages are written one at
    a time; closing the encoder ends the transmission.
    """

    def __init__(
        self,
        out: BinaryIO,
        cipher: Optional[KeystreamCipher] = None,
        *,
        no_end_markers: bool = False,
        reserved_key_len: int = RESERVED_KEY_LEN,
    ) -> None:
        if reserved_key_len < MIN_RESERVED_KEY_LEN:
            raise ValueError(f"reserved_key_len must be >= {MIN_RESERVED_KEY_LEN}")
        self._out = out
        self._cipher = cipher
        self.no_end_markers = no_end_markers
        self.reserved_key_len = reserved_key_len
        self._state = INITIAL
        self._write_state = INITIAL
        self._section = SECTION_DEFAULT
        self._key: Optional[Key] = None
        self._msg_count = 0
        self._current: Optional[MessageWriter] = None
        self.key_names = []
        self.closed = False

    def new_message(self) -> "MessageWriter":
        if self.closed:
            raise ValueError("encoder is closed")
        if self._current is not None and not self._current.closed:
            raise ValueError("previous message is still open")
        if self.no_end_markers and self._msg_count >= 1:
            raise MaxOneMessage("max one message allowed when using no end markers")
        self._msg_count += 1
        self._current = MessageWriter(self)
        return self._current

    def close(self) -> None:
        """Close any open message and send end-of-transmission."""
        if self.closed:
            return
        if self._current is not None:
            self._current.close()
        if self.closed:
            # the transmission was aborted while closing the message
            return
        if not self.no_end_markers:
            self._end_of_transmission()
        self.closed = True

    def __enter__(self) -> "Encoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _set_section(self, section: int) -> None:
        prev = self._section
        self._state, ctl = self._state.transition(ALT_SHIFT)
        out = bytearray(ctl)
        out.append(SECTION_SELECT)
        if section != prev and section != SECTION_DEFAULT:
            out.append(section)
        self._section = section
        logger.debug(f"Section {chr(section) if section else 'default'}")
        # A section id must follow its select symbol under the same key.
        self._write(bytes(out), atomic=True)

    def _end_of_message(self) -> None:
        self._state, ctl = self._state.transition(ALT_SHIFT)
        self._write(ctl + bytes([END_OF_MESSAGE]))

    def _end_of_transmission(self) -> None:
        self._state, ctl = self._state.transition(ALT_SHIFT)
        self._write(ctl + bytes([END_OF_TRANSMISSION]))

    def _encode_string(self, text: str) -> None:
        self._state, out = encode_text(self._state, text)
        self._write(out)

    def _encode_bytes(self, data: bytes) -> None:
        if not data:
            return
        self._state, ctl = self._state.transition(CodecState(True, self._state.shift, True))
        self._write(ctl + encode_hex(data))

    def _write(self, p: bytes, atomic: bool = False) -> None:
        if self.closed:
            raise ValueError("encoder is closed")
        if self._cipher is None:
            self._out.write(p)
            return

        buf = bytearray(p)
        if self._key is None:
            buf[:0] = self._open_first_key()

        rotated = False
        while buf:
            available = self._key.bytes_left - self.reserved_key_len
            if available <= 0 or (atomic and not rotated and len(buf) > available):
                buf[:0] = self._rotate()
                rotated = True
                continue
            chunk = bytes(buf[:available])
            self._write_state = self._write_state.replay(chunk)
            self._cipher.write(chunk)
            del buf[: len(chunk)]
        self._flush()

    def _flush(self) -> None:
        data = self._cipher.read()
        if data:
            self._out.write(data)

    def _open_first_key(self) -> bytes:
        """Open the first key, announce it in clear and return the state reset."""
        try:
            key = self._cipher.next_key()
            self._check_size(key)
        except KeyStoreError as e:
            logger.error(f"No usable first key: {e}")
            self._abort_transmission()
            raise
        self._key = self._cipher.open_key(key.name)
        self.key_names.append(key.name)
        before = self._write_state
        self._write_state, announcement = key_announcement(self._write_state, key.name)
        self._out.write(announcement)
        logger.debug(f"Announced first key {key.name!r} in clear")
        _, restore = self._write_state.transition(before)
        return restore

    def _rotate(self) -> bytes:
        """Announce and open the next key; return the symbols restoring the state."""
        before = self._write_state
        try:
            key = self._cipher.next_key()
            self._check_size(key)
            state, announcement = key_announcement(self._write_state, key.name)
            limit = min(self.reserved_key_len, self._key.bytes_left)
            if len(announcement) > limit:
                raise KeyAnnouncementTooLong(key.name, len(announcement), limit)
        except (KeyStoreError, KeyAnnouncementTooLong) as e:
            logger.error(f"Cannot rotate away from key {self._key.name!r} ({self._key.bytes_left} symbols left): {e}")
            self._abort_transmission()
            raise
        # The announcement still uses the old key; the receiver only learns
        # about the new key once it has read it.
        self._cipher.write(announcement)
        self._write_state = state
        old_name = self._key.name
        self._key = self._cipher.open_key(key.name)
        self.key_names.append(key.name)
        logger.debug(f"Rotated key {old_name!r} -> {key.name!r}")
        _, restore = self._write_state.transition(before)
        return restore

    def _check_size(self, key: Key) -> None:
        if key.bytes_left <= self.reserved_key_len:
            raise KeyStoreError(
                f"key {key.name!r} has {key.bytes_left} symbols, needs more than the {self.reserved_key_len} reserved"
            )

    def _abort_transmission(self) -> None:
        """Spend the reserve of the current key on end-of-transmission."""
        self._write_state, ctl = self._write_state.transition(ALT_SHIFT)
        eot = ctl + bytes([END_OF_TRANSMISSION])
        if self._key is not None and len(eot) <= self._key.bytes_left:
            self._cipher.write(eot)
        self._flush()
        self.closed = True

    def _message_closed(self, msg: "MessageWriter") -> None:
        if self._current is msg:
            self._current = None


class MessageWriter:
    """One outgoing message. Obtain it from Encoder.new_message()."""

    def __init__(self, encoder: Encoder) -> None:
        self.header = Header()
        self._encoder = encoder
        self._crc: Optional[int] = None
        self._filename: Optional[str] = None
        self._content_type: Optional[str] = None
        self._header_sent = False
        self._binary = False
        self.closed = False

    def with_crc32(self) -> "MessageWriter":
        self._crc = 0
        return self

    def with_filename(self, name: str) -> "MessageWriter":
        self._filename = name
        return self

    def with_content_type(self, content_type: str) -> "MessageWriter":
        self._content_type = content_type.upper()
        return self

    @property
    def binary(self) -> bool:
        return not is_text_content_type(self._content_type or self.header.get(HEADER_CONTENT_TYPE))

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("message is closed")
        data = bytes(data)
        if not self._header_sent:
            self._write_header()
        if self._crc is not None:
            self._crc = zlib.crc32(data, self._crc)
        if self._binary:
            self._encoder._encode_bytes(data)
        else:
            self._encoder._encode_string(data.decode("utf-8", errors="surrogateescape"))
        return len(data)

    def write_string(self, text: str) -> int:
        return self.write(text.encode("utf-8", errors="surrogateescape"))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        enc = self._encoder
        try:
            if enc.closed:
                return
            if not self._header_sent:
                self._write_header()
            if self._crc is not None:
                enc._set_section(SECTION_CHECKSUM)
                enc._encode_bytes(struct.pack(">I", self._crc & 0xFFFFFFFF))
                enc._set_section(SECTION_DEFAULT)
            if not enc.no_end_markers:
                enc._end_of_message()
        finally:
            enc._message_closed(self)

    def __enter__(self) -> "MessageWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _write_header(self) -> None:
        if self._filename:
            self.header[HEADER_FILENAME] = self._filename
        if self._content_type:
            self.header[HEADER_CONTENT_TYPE] = self._content_type
        for key, value in self.header.items():
            if " " in key or " " in value:
                raise ValueError(f"header {key!r} must not contain spaces")
        self._header_sent = True
        self._binary = self.binary
        wire = self.header.to_wire()
        if not wire:
            return
        enc = self._encoder
        enc._set_section(SECTION_HEADER)
        enc._encode_string(wire)
        enc._set_section(SECTION_DEFAULT)
