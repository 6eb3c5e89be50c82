"""Deterministic seeded generator (splitmix64).

The generator is a pure function of `(seed, cursor)`: two instances built
from the same pair produce the same future sequence, and a battle can be
persisted as `{seed, cursor}` and resumed exactly. The bit operations below
are part of the save format and must not change.
"""

from __future__ import annotations

from rpg_turns.models import RngState

MASK64 = 0xFFFFFFFFFFFFFFFF
GOLDEN_GAMMA = 0x9E3779B97F4A7C15
_MIX1 = 0xBF58476D1CE4E5B9
_MIX2 = 0x94D049BB133111EB

# Largest double below 1.0; keeps next() inside [0, 1) when the raw value
# rounds up to 2**64 in float conversion.
_BELOW_ONE = 1.0 - 2.0 ** -53


def hash_seed(seed: str) -> int:
    """Fold the seed's UTF-16 code units into a 64-bit state (h * 31 + c).

    Characters outside the BMP count as two units (a surrogate pair).
    """
    data = seed.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = int.from_bytes(data[i:i + 2], "little")
        h = ((h << 5) - h + unit) & MASK64
    return h or 1


class Rng:
    """Seeded generator; every draw advances `cursor` by exactly one."""

    def __init__(self, seed: str, cursor: int = 0) -> None:
        if cursor < 0:
            raise ValueError(f"cursor must be non-negative, got {cursor}")
        self.seed = seed
        self._state = hash_seed(seed)
        self._cursor = cursor
        self._consumed = 0
        # Fast-forward: state only, cursor and consumed stay put.
        self._state = (self._state + GOLDEN_GAMMA * cursor) & MASK64

    @classmethod
    def from_state(cls, state: RngState) -> Rng:
        return cls(state.seed, state.cursor)

    def _advance(self) -> None:
        self._state = (self._state + GOLDEN_GAMMA) & MASK64

    def next_raw(self) -> int:
        """Next unsigned 64-bit output."""
        self._cursor += 1
        self._consumed += 1
        self._advance()
        z = self._state
        z = ((z ^ (z >> 30)) * _MIX1) & MASK64
        z = ((z ^ (z >> 27)) * _MIX2) & MASK64
        return (z ^ (z >> 31)) & MASK64

    def next(self) -> float:
        """Float in [0, 1)."""
        return min(float(self.next_raw()) / float(MASK64), _BELOW_ONE)

    def d20(self) -> int:
        return int(self.next() * 20) + 1

    def range(self, low: int, high: int) -> int:
        """Integer in [low, high], inclusive."""
        if high < low:
            raise ValueError(f"empty range [{low}, {high}]")
        return int(self.next() * (high - low + 1)) + low

    def chance(self, percent: float) -> bool:
        return self.next() * 100 < percent

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def consumed(self) -> int:
        """Draws made by this instance, excluding the fast-forward."""
        return self._consumed

    def get_state(self) -> RngState:
        return RngState(seed=self.seed, cursor=self._cursor)


def create(seed: str, cursor: int = 0) -> Rng:
    return Rng(seed, cursor)
