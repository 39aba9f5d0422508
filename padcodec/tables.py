"""
Symbol tables and wire-alphabet helpers.

Every symbol on the wire is one of the letters A-Z. A letter is either a
control letter or an index into one of four character tables, selected by the
(alt, shift) pair of the codec state:

    alt shift  table
     0    0    AU  ABCDEFGHIJKLMNOP RSTUVWXY_
     0    1    AL  abcdefghijklmnop_rstuvwxy_
     1    0    BU  0123456789ÅÄÖÆØ.Q?Z+-,____
     1    1    BL  __________åäöæø:q!z"/%____

A "_" slot has no character. Index 25 (Z) is never data since Z switches
tables in every state.
"""

from __future__ import annotations

from typing import Optional

from .errors import UnmappedSymbolError

TABLE_AU = "ABCDEFGHIJKLMNOP RSTUVWXY_"
TABLE_AL = "abcdefghijklmnop_rstuvwxy_"
TABLE_BU = "0123456789ÅÄÖÆØ.Q?Z+-,____"
TABLE_BL = "__________åäöæø:q!z\"/%____"
DUMMY = "_"

TABLES: dict[tuple[bool, bool], str] = {
    (False, False): TABLE_AU,
    (False, True): TABLE_AL,
    (True, False): TABLE_BU,
    (True, True): TABLE_BL,
}

ALPHABET_SIZE = 26
FIRST = ord("A")
LAST = ord("Z")

# Control letters. Most of them only mean something in a given table.
SWITCH_TABLE = ord("Z")  # any table
SHIFT_MODE = ord("X")  # alt
HEX_MODE = ord("W")  # alt
KEY_MODE = ord("Y")  # alt
SECTION_SELECT = ord("A")  # alt + shift
BELL = ord("B")  # alt + shift
TAB = ord("C")  # alt + shift
END_OF_MESSAGE = ord("E")  # alt + shift
END_OF_TRANSMISSION = ord("F")  # alt + shift
RESERVED = frozenset(ord(c) for c in "DGHIJ")  # alt + shift
NEWLINE = ord("Q")  # shift

# Hex nibbles are the letters A-P
NIBBLE_LAST = ord("P")

# Section identifiers
SECTION_DEFAULT = 0
SECTION_HEADER = ord("H")
SECTION_CHECKSUM = ord("C")

GROUP_SIZE = 5


def _build_index() -> dict[str, tuple[bool, bool, int]]:
    index: dict[str, tuple[bool, bool, int]] = {}
    # Lookup order AU, AL, BU, BL; no character appears in two tables.
    for (alt, shift), table in TABLES.items():
        for i, ch in enumerate(table):
            if ch != DUMMY:
                index.setdefault(ch, (alt, shift, i))
    return index


_CHAR_INDEX = _build_index()


def table_for(alt: bool, shift: bool) -> str:
    return TABLES[(bool(alt), bool(shift))]


def locate(ch: str) -> Optional[tuple[bool, bool, int]]:
    """Return (alt, shift, index) for a character, or None if no table has it."""
    return _CHAR_INDEX.get(ch)


def encode_symbol(alt: bool, shift: bool, ch: str) -> int:
    """Return the wire letter (as a byte value) for ch in the (alt, shift) table."""
    idx = table_for(alt, shift).find(ch)
    if idx < 0 or ch == DUMMY:
        raise KeyError(ch)
    return FIRST + idx


def decode_symbol(alt: bool, shift: bool, letter: int) -> str:
    """Return the character a wire letter selects in the (alt, shift) table.

    Looking up a slot without a character means the caller dispatched a
    control letter as data, so it is an internal error rather than bad input.
    """
    ch = table_for(alt, shift)[letter - FIRST]
    if ch == DUMMY:
        raise UnmappedSymbolError(
            f"no character at {chr(letter)} in table alt={alt} shift={shift}"
        )
    return ch


def is_letter(b: int) -> bool:
    return FIRST <= b <= LAST


def is_nibble(b: int) -> bool:
    return FIRST <= b <= NIBBLE_LAST


def is_wire(data: bytes) -> bool:
    """True if every byte of data is an A-Z letter."""
    return all(FIRST <= b <= LAST for b in data)


def encode_hex(data: bytes) -> bytes:
    out = bytearray()
    for b in data:
        out.append((b >> 4) + FIRST)
        out.append((b & 0x0F) + FIRST)
    return bytes(out)


def decode_hex(symbols: bytes) -> bytes:
    if len(symbols) % 2:
        raise ValueError("uneven nibble count")
    out = bytearray()
    for i in range(0, len(symbols), 2):
        hi = symbols[i] - FIRST
        lo = symbols[i + 1] - FIRST
        if not (0 <= hi < 16 and 0 <= lo < 16):
            raise ValueError(f"invalid nibble pair {chr(symbols[i])}{chr(symbols[i + 1])}")
        out.append((hi << 4) | lo)
    return bytes(out)


def format_groups(text: str, size: int = GROUP_SIZE, pad: str = "Z") -> str:
    """Pad text with pad letters to whole groups and join the groups with spaces."""
    if size <= 0:
        raise ValueError("group size must be positive")
    if len(text) % size:
        text += pad * (size - len(text) % size)
    return " ".join(text[i : i + size] for i in range(0, len(text), size))
