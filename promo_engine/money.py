# promo_engine/money.py
"""
Fixed-point money in integer minor units (cents).

Everything that reaches the engine is already an integer amount of cents;
parsing of human input ("12.50", "33%") happens here, at the boundary.
"""
from decimal import Decimal, InvalidOperation
from functools import total_ordering

CENTS_PER_UNIT = 100
BASIS_POINTS_PER_PERCENT = 100
MAX_PERCENTAGE_BPS = 100 * BASIS_POINTS_PER_PERCENT


class MoneyFormatError(ValueError):
    """Raised when a monetary or percentage value cannot be parsed exactly."""


def _to_decimal(value) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise MoneyFormatError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (int, float, str)):
        raw = str(value).strip()
        if not raw:
            raise MoneyFormatError("empty value")
        try:
            d = Decimal(raw)
        except InvalidOperation:
            raise MoneyFormatError(f"not a number: {value!r}") from None
    else:
        raise MoneyFormatError(f"unsupported type: {type(value).__name__}")

    if not d.is_finite():
        raise MoneyFormatError(f"not a finite number: {value!r}")
    return d


def _scale_exact(value, scale: int, what: str) -> int:
    d = _to_decimal(value)
    if d < 0:
        raise MoneyFormatError(f"{what} must not be negative")
    scaled = d * scale
    if scaled != scaled.to_integral_value():
        raise MoneyFormatError(f"{what} allows at most 2 decimal places: {value!r}")
    return int(scaled)


@total_ordering
class Money:
    __slots__ = ("_cents",)

    def __init__(self, cents: int):
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise TypeError(f"Money needs integer cents, got {type(cents).__name__}")
        self._cents = cents

    @classmethod
    def from_cents(cls, cents: int) -> "Money":
        return cls(cents)

    @classmethod
    def parse(cls, value) -> "Money":
        """Parse a major-unit amount such as "12.34", 12 or Decimal("0.5")."""
        return cls(_scale_exact(value, CENTS_PER_UNIT, "amount"))

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @property
    def cents(self) -> int:
        return self._cents

    def to_decimal(self) -> Decimal:
        return Decimal(self._cents) / CENTS_PER_UNIT

    def clamp_zero(self) -> "Money":
        return self if self._cents >= 0 else Money(0)

    def __add__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self._cents + other._cents)

    def __sub__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self._cents - other._cents)

    def __eq__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self._cents == other._cents

    def __lt__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self._cents < other._cents

    def __hash__(self):
        return hash(("Money", self._cents))

    def __bool__(self):
        return self._cents != 0

    def __repr__(self):
        return f"Money({self._cents})"

    def __str__(self):
        sign = "-" if self._cents < 0 else ""
        units, cents = divmod(abs(self._cents), CENTS_PER_UNIT)
        return f"{sign}{units}.{cents:02d}"


def parse_percentage(value) -> int:
    """
    Parse a percentage ("20", 12.5, "33.33") into basis points.

    Accepts 0 < p <= 100 with at most two decimals.
    """
    bps = _scale_exact(value, BASIS_POINTS_PER_PERCENT, "percentage")
    if bps <= 0 or bps > MAX_PERCENTAGE_BPS:
        raise MoneyFormatError("percentage must be greater than 0 and at most 100")
    return bps


def format_percentage(bps: int) -> str:
    whole, frac = divmod(bps, BASIS_POINTS_PER_PERCENT)
    return f"{whole}" if frac == 0 else f"{whole}.{frac:02d}".rstrip("0")
