"""A fixed 128-bit mask addressed from the most significant bit."""

from __future__ import annotations

from dataclasses import dataclass

_WORD_BITS = 64
_TOTAL_BITS = 2 * _WORD_BITS


@dataclass
class BitArray:
    """A 128-bit mask. Bit 0 is the leftmost bit of ``lo``; bit 64 the leftmost of ``hi``."""

    lo: int = 0
    hi: int = 0

    @staticmethod
    def _locate(bit_index: int) -> tuple[str, int]:
        if not 0 <= bit_index < _TOTAL_BITS:
            raise IndexError(f"bit index {bit_index} outside 0..{_TOTAL_BITS - 1}")
        if bit_index < _WORD_BITS:
            return "lo", _WORD_BITS - 1 - bit_index
        return "hi", _WORD_BITS - 1 - (bit_index - _WORD_BITS)

    def set_bit(self, bit_index: int) -> None:
        """Set the bit at ``bit_index`` to 1."""
        word, shift = self._locate(bit_index)
        setattr(self, word, getattr(self, word) | (1 << shift))

    def reset(self) -> None:
        """Clear every bit."""
        self.lo = 0
        self.hi = 0

    def get_bit(self, bit_index: int) -> int:
        """Return the bit at ``bit_index`` as 0 or 1."""
        word, shift = self._locate(bit_index)
        return (getattr(self, word) >> shift) & 1