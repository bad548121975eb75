"""Split a 32-bit word into fixed-width fields, lowest field first."""

from __future__ import annotations

from dataclasses import dataclass

FIELD_COUNT = 32


def _int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


@dataclass
class Splitter:
    """Takes a word and cuts it into fields of ``width`` bits."""

    value: int = 0
    width: int = 1

    def outputs(self) -> list[int]:
        """Return 32 fields, least significant first, with arithmetic shifts."""
        mask = (1 << self.width) - 1
        current = _int32(self.value)
        fields = []
        for _ in range(FIELD_COUNT):
            fields.append(current & mask)
            current >>= self.width
        return fields