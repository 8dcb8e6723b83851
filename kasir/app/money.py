from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


Q2 = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(v: Any, default: Decimal = ZERO) -> Decimal:
    # str() first so floats coming from JSON keep their printed value instead of binary noise.
    if v is None or v == "":
        return default
    try:
        d = v if isinstance(v, Decimal) else Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return default
    return d if d.is_finite() else default


def q2(v: Decimal) -> Decimal:
    # Amounts are stored as numeric(14,2).
    return v.quantize(Q2, rounding=ROUND_HALF_UP)


def format_rupiah(amount: Any) -> str:
    """Rp with dot thousands separators, decimals only when non-zero: 25000 -> "Rp 25.000"."""
    d = q2(to_decimal(amount))
    sign = "-" if d < 0 else ""
    whole, _, frac = f"{abs(d):.2f}".partition(".")
    grouped = f"{int(whole):,}".replace(",", ".")
    if frac.strip("0"):
        return f"{sign}Rp {grouped},{frac}"
    return f"{sign}Rp {grouped}"
