from dataclasses import dataclass

from z3 import *

from peephole.util import mask, popcount

@dataclass(frozen=True)
class KnownBits:
    """Bits of a value that are known to be zero or one.

    Attributes:
    width: Bit-width of the value.
    zero: Mask of the bits that are known to be zero.
    one: Mask of the bits that are known to be one.
    """
    width: int
    zero: int = 0
    one: int = 0

    def __post_init__(self):
        assert self.zero & self.one == 0, 'conflicting known bits'
        assert (self.zero | self.one) <= mask(self.width), 'known bits exceed width'

    @staticmethod
    def top(width):
        return KnownBits(width)

    @staticmethod
    def from_value(width, value):
        value &= mask(width)
        return KnownBits(width, zero=~value & mask(width), one=value)

    @property
    def is_top(self):
        return self.zero == 0 and self.one == 0

    @property
    def unknown(self):
        return mask(self.width) & ~(self.zero | self.one)

    def unpin(self, bit):
        m = ~(1 << bit)
        return KnownBits(self.width, self.zero & m, self.one & m)

    def meet(self, other):
        """Narrows self by the facts of other."""
        assert self.width == other.width
        return KnownBits(self.width, self.zero | other.zero, self.one | other.one)

    def contains(self, value):
        return value & self.zero == 0 and ~value & self.one == 0

    def utility(self):
        return (self.width - popcount(self.zero)) + (self.width - popcount(self.one))

    def constraint(self, x):
        res = []
        if self.zero:
            res.append(x & BitVecVal(self.zero, self.width) == 0)
        if self.one:
            res.append(x & BitVecVal(self.one, self.width) == BitVecVal(self.one, self.width))
        return res

    def __str__(self):
        def bit(i):
            b = 1 << i
            return '0' if self.zero & b else '1' if self.one & b else 'x'
        return ''.join(bit(i) for i in reversed(range(self.width)))

    @staticmethod
    def parse(s):
        width = len(s)
        zero = one = 0
        for i, c in enumerate(reversed(s)):
            match c:
                case '0': zero |= 1 << i
                case '1': one  |= 1 << i
                case 'x': pass
                case _: raise ValueError(f'invalid known bits character {c!r}')
        return KnownBits(width, zero, one)

@dataclass(frozen=True)
class ConstantRange:
    """A half-open, wrapping interval [lower, upper) of values.

    lower == upper denotes either the full set (both at the maximum
    value) or the empty set (both zero).
    """
    width: int
    lower: int
    upper: int

    def __post_init__(self):
        m = mask(self.width)
        assert 0 <= self.lower <= m and 0 <= self.upper <= m, 'range bound out of width'
        assert self.lower != self.upper or self.lower in (0, m), \
            'lower == upper only for full or empty ranges'

    @staticmethod
    def full(width):
        return ConstantRange(width, mask(width), mask(width))

    @staticmethod
    def empty(width):
        return ConstantRange(width, 0, 0)

    @staticmethod
    def from_size(width, lower, size):
        """Range of size values starting at lower (wrapping)."""
        if size >= 1 << width:
            return ConstantRange.full(width)
        assert size > 0
        return ConstantRange(width, lower & mask(width), (lower + size) & mask(width))

    @property
    def is_full(self):
        return self.lower == self.upper == mask(self.width)

    @property
    def is_empty(self):
        return self.lower == self.upper == 0

    @property
    def size(self):
        if self.is_full:
            return 1 << self.width
        return (self.upper - self.lower) & mask(self.width)

    def contains(self, value):
        return self.is_full or (value - self.lower) & mask(self.width) < self.size

    def constraint(self, x):
        if self.is_full:
            return []
        if self.is_empty:
            return [ BoolVal(False) ]
        lower = BitVecVal(self.lower, self.width)
        return [ ULT(x - lower, BitVecVal(self.size, self.width)) ]

    def __str__(self):
        return f'[{self.lower},{self.upper})'
