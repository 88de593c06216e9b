"""Bit meanings of the READALLALARMS2 alarm words.

Bits marked "(X)" only exist on the X series. Bits not listed are
undocumented and reported by number only.
"""

from __future__ import annotations

GLOBAL_ALARM_BITS: dict[int, str] = {
    0: "mains phases detect error (X)",
    1: "AD config fault",
    2: "DA config fault",
    3: "AUX voltage fault (X)",
    4: "digital board over-temperature [shutdown]",
    5: "PSU over-temperature (X) [shutdown]",
    6: "fan fault [shutdown]",
    7: "moderate over-temperature (X) [shutdown]",
    8: "high over-temperature (X) [shutdown]",
}

CHANNEL_ALARM_BITS: dict[int, str] = {
    0: "input clip",
    1: "active thermal SOA (X)",
    3: "over-temperature",
    4: "rail voltage fault",
    5: "AUX current fault (X)",
    6: "other fault",
    7: "low load protection",
}


def set_bits(word: int, width: int = 32) -> list[int]:
    """Return the indices of the bits set in ``word``."""
    return [bit for bit in range(width) if (word >> bit) & 1]


def _explain(word: int, table: dict[int, str]) -> list[str]:
    return [table.get(bit, f"bit{bit} (undocumented)") for bit in set_bits(word)]


def explain_global(word: int) -> list[str]:
    """Name the conditions set in the global alarm word."""
    return _explain(word, GLOBAL_ALARM_BITS)


def explain_channel(word: int) -> list[str]:
    """Name the conditions set in a per-channel alarm word."""
    return _explain(word, CHANNEL_ALARM_BITS)


def bit_table() -> dict:
    return {
        "global": {str(bit): text for bit, text in GLOBAL_ALARM_BITS.items()},
        "channel": {str(bit): text for bit, text in CHANNEL_ALARM_BITS.items()},
    }
