"""Money helpers: cent rounding for stored amounts and per-user rendering."""
import math
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP, Decimal

_ROUNDING = {
    "half_up":   ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "down":      ROUND_DOWN,
    "up":        ROUND_UP,
}


def round_money(value) -> float:
    """Round to cents. Every stored amount and every comparison goes through here."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def is_finite_number(value) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def format_amount(amount, user=None) -> str:
    """Render an amount with the user's currency preferences.

    >>> format_amount(1234.5)
    '$1,234.50'
    """
    symbol     = getattr(user, "currency_symbol", None) or "$"
    position   = getattr(user, "symbol_position", None) or "before"
    places     = getattr(user, "decimal_places", None)
    places     = 2 if places is None else places
    thousands  = getattr(user, "thousands_separator", None)
    thousands  = "," if thousands is None else thousands
    point      = getattr(user, "decimal_separator", None) or "."
    rounding   = _ROUNDING.get(getattr(user, "rounding", None) or "half_up", ROUND_HALF_UP)

    quantum = Decimal(1).scaleb(-places)
    value = Decimal(str(amount)).quantize(quantum, rounding=rounding)
    sign = "-" if value < 0 else ""
    whole, _, frac = f"{abs(value):.{places}f}".partition(".")

    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    text = thousands.join(groups)
    if places:
        text = f"{text}{point}{frac}"

    if position == "after":
        return f"{sign}{text} {symbol}"
    return f"{sign}{symbol}{text}"
