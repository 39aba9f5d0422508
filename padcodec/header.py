from __future__ import annotations

from typing import Optional

from .errors import HeaderParseError

# Filename of the data, if applicable
HEADER_FILENAME = "FN"
# Length of the data in bytes before encoding
HEADER_CONTENT_LENGTH = "CL"
# Data type, usually a mime type but a short extension (JPG, TXT) works too.
# Missing means text.
HEADER_CONTENT_TYPE = "CT"
# Special encoding applied to the data, for example gzip
HEADER_CONTENT_ENCODING = "CE"
# ISO 8601 origination time, e.g. 2021-05-24T13:43:20Z
HEADER_TIMESTAMP = "TS"
# Origination time as NNHHMM[Z]: day, hour, minute, optional zone letter
HEADER_TIME_NR = "TNR"
# Date-time group, DDHHMMZMONYY (e.g. 091630ZJUL11)
HEADER_DATE_TIME_GROUP = "DTG"
# Comma separated recipients, senders, carbon copies
HEADER_TO = "TO"
HEADER_FROM = "DE"
HEADER_CC = "CC"
HEADER_BCC = "BCC"
# This message is part P of N, "P,N"
HEADER_PART = "PART"
# Language of the message, by english name
HEADER_LANGUAGE = "LANG"
# Unique message id
HEADER_ID = "ID"

TEXT_CONTENT_TYPES = frozenset({"application/json", "application/xml", "json", "txt", "xml"})


def is_text_content_type(content_type: Optional[str]) -> bool:
    """True if payload of this content type goes through the text tables.

    Matching is case-insensitive; no content type means text.
    """
    if not content_type:
        return True
    ct = content_type.lower()
    return ct.startswith("text") or ct in TEXT_CONTENT_TYPES


class Header(dict):
    """Message header; serialised as space-joined "key value" pairs."""

    def keys_sorted(self) -> list[str]:
        return sorted(self)

    def to_wire(self) -> str:
        return " ".join(f"{key} {self[key]}" for key in self.keys_sorted())

    def parse(self, text: str) -> "Header":
        """Add the pairs found in wire text.

        Complete pairs are stored even when the token count is odd, then
        HeaderParseError reports the dangling token.
        """
        if not text:
            return self
        parts = text.split(" ")
        for i in range(0, len(parts) - 1, 2):
            self[parts[i]] = parts[i + 1]
        if len(parts) % 2:
            raise HeaderParseError(f"dangling header token {parts[-1]!r}")
        return self

    @classmethod
    def from_wire(cls, text: str) -> "Header":
        return cls().parse(text)

    def copy(self) -> "Header":
        return Header(self)
