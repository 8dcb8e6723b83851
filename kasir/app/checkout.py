from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from .cart import CartLine, CartStore
from .errors import BackendError, FetchError, ValidationError
from .logs import json_log
from .money import ZERO, q2, to_decimal
from .query import Backend
from .settings_repo import SettingsRepo

PAYMENT_METHODS = {"cash", "qris"}


@dataclass(frozen=True)
class CheckoutTotals:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


def compute_checkout_totals(lines: Iterable[CartLine], tax_rate_percent) -> CheckoutTotals:
    rate = to_decimal(tax_rate_percent)
    if rate < 0:
        raise ValidationError("tax rate must be >= 0")
    subtotal = sum((ln.line_total for ln in lines), ZERO)
    tax = q2(subtotal * rate / Decimal("100"))
    return CheckoutTotals(subtotal=subtotal, tax_rate=rate, tax_amount=tax, total=subtotal + tax)


def compute_change(total: Decimal, cash_received) -> Decimal:
    # Negative means the customer has not paid enough yet.
    return to_decimal(cash_received) - total


def transaction_code(transaction_id: str) -> str:
    return f"TXN-{transaction_id[:8]}"


class CheckoutService:
    """Turns the active cart into a `transactions` row plus its `transaction_items`."""

    def __init__(self, backend: Backend, cart: CartStore, settings_repo: SettingsRepo):
        self.backend = backend
        self.cart = cart
        self.settings_repo = settings_repo

    async def quote(self) -> CheckoutTotals:
        return compute_checkout_totals(self.cart.get_lines(), await self.settings_repo.get_tax_rate())

    async def checkout(
        self,
        user_id,
        method: str,
        cash_received=None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> dict:
        method = (method or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"unsupported payment method: {method or '(empty)'}")
        if user_id is None or self.cart.active_user_id is None:
            raise ValidationError("login required")
        lines = self.cart.get_lines()
        if not lines:
            raise ValidationError("cart is empty")

        totals = compute_checkout_totals(lines, await self.settings_repo.get_tax_rate())
        tx_id = str(uuid.uuid4())
        tx = {
            "id": tx_id,
            "transaction_code": transaction_code(tx_id),
            "id_user": user_id,
            "payment_method": method,
            "total_amount": totals.subtotal,
            "final_amount": totals.total,
            "tax": totals.tax_amount,
            "latitude": latitude,
            "longitude": longitude,
            "transaction_time": datetime.now(timezone.utc),
        }
        if method == "cash":
            received = to_decimal(cash_received, default=totals.total)
            change = compute_change(totals.total, received)
            if change < 0:
                raise ValidationError("cash received is less than the total")
            tx["cash_received"] = received
            tx["cash_change"] = max(change, ZERO)

        try:
            created = await self.backend.insert("transactions", [tx])
            saved = created[0] if created else tx
            items = [
                {
                    "transaction_id": saved["id"],
                    "product_id": ln.product_id,
                    "quantity": ln.quantity,
                    "price": ln.unit_price,
                    "total_price": ln.line_total,
                }
                for ln in lines
            ]
            saved_items = await self.backend.insert("transaction_items", items)
        except BackendError as ex:
            json_log("error", "checkout.failed", user_id=user_id, method=method, error=str(ex))
            raise FetchError(str(ex)) from ex

        self.cart.clear()
        json_log(
            "info",
            "checkout.completed",
            transaction_id=saved["id"],
            code=saved.get("transaction_code"),
            method=method,
            total=totals.total,
        )
        receipt_lines = [{"product_name": ln.name, "quantity": ln.quantity, "price": ln.unit_price} for ln in lines]
        return {"transaction": saved, "items": saved_items or items, "totals": totals, "receipt_lines": receipt_lines}
