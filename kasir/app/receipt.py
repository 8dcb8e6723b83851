from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from .money import format_rupiah, to_decimal

MONTHS_ID = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


def format_receipt_time(v: Any) -> str:
    if isinstance(v, str) and v:
        v = datetime.fromisoformat(v.replace("Z", "+00:00"))
    if not isinstance(v, datetime):
        return ""
    return f"{v.day:02d} {MONTHS_ID[v.month - 1]} {v.year} {v.hour:02d}.{v.minute:02d}"


def render_receipt(
    transaction: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    store_name: str,
    store_address: str = "",
    width: int = 32,
) -> str:
    """
    Plain-text receipt for a 58mm thermal printer (32 columns).
    Items need `quantity`, `price` and a product name under `product_name` or `name`.
    """
    rule = "-" * width
    out = [store_name.center(width).rstrip()]
    if store_address:
        out.append(store_address.center(width).rstrip())
    out.append("")
    out.append(f"TRX: {transaction.get('transaction_code') or ''}")
    when: Optional[str] = format_receipt_time(transaction.get("transaction_time"))
    if when:
        out.append(when)
    out.append(f"Payment: {transaction.get('payment_method') or ''}")
    out.append(rule)
    for it in items:
        qty = int(it.get("quantity") or 0)
        name = it.get("product_name") or it.get("name") or "Unknown Product"
        out.append(f"{qty}x {name}")
        out.append(format_rupiah(to_decimal(it.get("price")) * qty))
    out.append(rule)
    tax = to_decimal(transaction.get("tax"))
    if tax:
        out.append(f"Tax: {format_rupiah(tax)}")
    out.append(f"TOTAL: {format_rupiah(transaction.get('final_amount'))}")
    if transaction.get("payment_method") == "cash" and transaction.get("cash_received") is not None:
        out.append(f"Cash: {format_rupiah(transaction.get('cash_received'))}")
        out.append(f"Change: {format_rupiah(transaction.get('cash_change'))}")
    out.append("")
    out.append("Terima kasih")
    return "\n".join(out) + "\n"
