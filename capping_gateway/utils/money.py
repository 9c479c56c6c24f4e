"""Money helpers - exact conversion between rupee decimals and integer paise"""

from decimal import Decimal, DecimalException, Inexact, InvalidOperation, localcontext
from typing import Any, Optional

from capping_gateway.config import settings

MINOR_UNITS = 100  # paise per rupee


def to_minor_units(value: Any) -> int:
    """
    Convert a rupee amount (int, str, Decimal or JSON float) to integer paise.

    Raises:
        ValueError: For non-numeric input, NaN/infinity, or sub-paisa precision
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e

    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")

    # Scaling must be exact however many digits were entered
    with localcontext() as ctx:
        ctx.prec = len(amount.as_tuple().digits) + 3
        ctx.traps[Inexact] = True
        try:
            minor = amount * MINOR_UNITS
            exact = minor == minor.to_integral_value()
        except DecimalException as e:
            raise ValueError(f"Not a representable amount: {value!r}") from e

    if not exact:
        raise ValueError(f"Amount has more than two decimal places: {value!r}")

    return int(minor)


def parse_amount(raw: Any) -> Optional[int]:
    """Parse user input into paise, returning None when it is not a valid number"""
    try:
        return to_minor_units(raw)
    except ValueError:
        return None


def from_minor_units(amount_cents: int) -> Decimal:
    """Paise to a two-place rupee Decimal"""
    sign, digits, exponent = Decimal(amount_cents).as_tuple()
    return Decimal((sign, digits, exponent - 2))


def to_wire(amount_cents: int) -> str:
    """Rupee decimal string for request bodies (never a float)"""
    return str(from_minor_units(amount_cents))


def group_digits(digits: str, grouping: str = "indian") -> str:
    """
    Insert thousands separators into a string of digits.

    Indian grouping keeps the last three digits together and groups the rest
    in pairs: 12345678 -> 1,23,45,678. Western grouping uses threes.
    """
    if grouping == "western":
        return f"{int(digits):,}"
    if grouping != "indian":
        raise ValueError(f"Unknown digit grouping: {grouping}")

    if len(digits) <= 3:
        return digits

    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)

    return ",".join(groups + [tail])


def format_money(amount_cents: int, symbol: str = "₹", grouping: str = "indian") -> str:
    """Format paise for display, showing paise only when non-zero (₹15,000 / ₹1,00,000.50)"""
    sign = "-" if amount_cents < 0 else ""
    rupees, paise = divmod(abs(amount_cents), MINOR_UNITS)

    text = group_digits(str(rupees), grouping)
    if paise:
        text = f"{text}.{paise:02d}"

    return f"{sign}{symbol}{text}"


class MoneyFormatter:
    """Display formatter bound to a currency symbol and digit grouping"""

    def __init__(self, symbol: str = "₹", grouping: str = "indian"):
        self.symbol = symbol
        self.grouping = grouping

    @classmethod
    def from_settings(cls) -> "MoneyFormatter":
        return cls(symbol=settings.currency_symbol, grouping=settings.digit_grouping)

    def format(self, amount_cents: int) -> str:
        return format_money(amount_cents, self.symbol, self.grouping)
