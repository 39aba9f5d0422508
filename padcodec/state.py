from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

from .tables import HEX_MODE, SHIFT_MODE, SWITCH_TABLE


@dataclass(frozen=True)
class CodecState:
    """Mode flags shared by the encoder and the decoder.

    (alt, shift) select the active character table. hex is the nibble escape
    sub-mode and is only entered or left from the alt table.
    """

    alt: bool = False
    shift: bool = False
    hex: bool = False

    def transition(self, desired: "CodecState") -> tuple["CodecState", bytes]:
        """Return the state reached and the control letters that reach desired.

        X and W are only understood in the alt table, so alt is entered first
        when shift or hex has to change. Alt is toggled at the end only if it
        still differs from desired.
        """
        alt, shift, hex_ = self.alt, self.shift, self.hex
        out = bytearray()
        if desired.shift != shift:
            if not alt:
                out.append(SWITCH_TABLE)
                alt = True
            out.append(SHIFT_MODE)
            shift = desired.shift
        if desired.hex != hex_:
            if not alt:
                out.append(SWITCH_TABLE)
                alt = True
            out.append(HEX_MODE)
            hex_ = desired.hex
        if desired.alt != alt:
            out.append(SWITCH_TABLE)
            alt = desired.alt
        return CodecState(alt, shift, hex_), bytes(out)

    def replay(self, symbols: Iterable[int]) -> "CodecState":
        """Apply the mode toggles found in already emitted symbols."""
        state = self
        for b in symbols:
            if b == SWITCH_TABLE:
                state = replace(state, alt=not state.alt)
            elif state.alt and b == SHIFT_MODE:
                state = replace(state, shift=not state.shift)
            elif state.alt and b == HEX_MODE:
                state = replace(state, hex=not state.hex)
        return state

    def __str__(self) -> str:
        return f"[Alt: {self.alt}, Shift: {self.shift}, Hex: {self.hex}]"


INITIAL = CodecState()
ALT_SHIFT = CodecState(alt=True, shift=True)
