from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol

from .errors import NotAuthenticatedError, ValidationError
from .local_store import USER_CARTS_KEY, LocalStore
from .logs import json_log
from .money import ZERO, to_decimal


@dataclass
class CartLine:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.product_id,
            "name": self.name,
            "price": str(self.unit_price),
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CartLine":
        pid = raw.get("id", raw.get("product_id"))
        return cls(
            product_id=str(pid),
            name=str(raw.get("name") or raw.get("product_name") or ""),
            unit_price=to_decimal(raw.get("price", raw.get("unit_price"))),
            quantity=int(raw.get("quantity") or 1),
        )


class CartPersistence(Protocol):
    def load(self) -> dict: ...

    def save(self, table: dict) -> None: ...


class LocalCartPersistence:
    """Whole per-user cart table under one key of the device-local store."""

    def __init__(self, store: LocalStore):
        self.store = store

    def load(self) -> dict:
        raw = self.store.get(USER_CARTS_KEY, {})
        return raw if isinstance(raw, dict) else {}

    def save(self, table: dict) -> None:
        self.store.set(USER_CARTS_KEY, table)


def _decode_table(raw: Mapping[str, Any]) -> dict[str, list[CartLine]]:
    table: dict[str, list[CartLine]] = {}
    for user_id, lines in (raw or {}).items():
        decoded: list[CartLine] = []
        for ln in lines or []:
            if not isinstance(ln, Mapping) or ln.get("id", ln.get("product_id")) is None:
                continue
            line = CartLine.from_dict(ln)
            if line.quantity >= 1:
                decoded.append(line)
        table[str(user_id)] = decoded
    return table


class CartStore:
    """
    Per-user carts. Only the active user's cart is visible; other users' lines are
    never touched by operations on the active one.

    Mutations update memory immediately. The whole table is then written through the
    persistence collaborator: on a worker thread (not awaited) when called from a running
    event loop, inline otherwise.
    """

    def __init__(self, persistence: CartPersistence):
        self.persistence = persistence
        self._active_user_id: Optional[str] = None
        self._write_lock = threading.Lock()
        self._seq = 0
        self._written_seq = 0
        self._pending: set[asyncio.Task] = set()
        try:
            raw = persistence.load()
        except Exception as ex:
            json_log("error", "cart.load_failed", error=str(ex))
            raw = {}
        self._carts = _decode_table(raw)

    @property
    def active_user_id(self) -> Optional[str]:
        return self._active_user_id

    # -- session -----------------------------------------------------------

    def set_active_user(self, user_id) -> None:
        uid = str(user_id) if user_id not in (None, "") else None
        if uid is None or uid == self._active_user_id:
            return
        self._active_user_id = uid
        if uid not in self._carts:
            self._carts[uid] = []
            self._persist()

    def clear_active_user(self) -> None:
        # Logout only hides the cart; the stored lines stay for the next login.
        self._active_user_id = None

    # -- mutations ---------------------------------------------------------

    def _active_lines(self) -> list[CartLine]:
        if self._active_user_id is None:
            raise NotAuthenticatedError("no active user")
        return self._carts.setdefault(self._active_user_id, [])

    def add_item(self, product: Mapping[str, Any]) -> None:
        try:
            lines = self._active_lines()
        except NotAuthenticatedError:
            json_log("debug", "cart.add_ignored", reason="no_active_user")
            return
        pid = product.get("id")
        if pid is None:
            raise ValidationError("product id is required")
        price = to_decimal(product.get("price"))
        if price < 0:
            raise ValidationError("price must be >= 0")
        pid = str(pid)
        for ln in lines:
            if ln.product_id == pid:
                ln.quantity += 1
                break
        else:
            name = str(product.get("name") or product.get("product_name") or "")
            lines.append(CartLine(product_id=pid, name=name, unit_price=price, quantity=1))
        self._persist()

    def remove_item(self, product_id) -> None:
        try:
            lines = self._active_lines()
        except NotAuthenticatedError:
            return
        pid = str(product_id)
        self._carts[self._active_user_id] = [ln for ln in lines if ln.product_id != pid]
        self._persist()

    def set_quantity(self, product_id, quantity: int) -> None:
        if quantity < 1:
            self.remove_item(product_id)
            return
        try:
            lines = self._active_lines()
        except NotAuthenticatedError:
            return
        pid = str(product_id)
        for ln in lines:
            if ln.product_id == pid:
                ln.quantity = int(quantity)
        self._persist()

    def clear(self) -> None:
        try:
            self._active_lines()
        except NotAuthenticatedError:
            return
        self._carts[self._active_user_id] = []
        self._persist()

    # -- queries -----------------------------------------------------------

    def get_lines(self) -> list[CartLine]:
        if self._active_user_id is None:
            return []
        return [replace(ln) for ln in self._carts.get(self._active_user_id, [])]

    def get_item_count(self) -> int:
        return sum(ln.quantity for ln in self.get_lines())

    def get_subtotal(self) -> Decimal:
        return sum((ln.line_total for ln in self.get_lines()), ZERO)

    def snapshot(self) -> dict:
        return {uid: [ln.to_dict() for ln in lines] for uid, lines in self._carts.items()}

    # -- persistence -------------------------------------------------------

    def _persist(self) -> None:
        self._seq += 1
        seq = self._seq
        snapshot = self.snapshot()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(seq, snapshot)
            return
        task = loop.create_task(asyncio.to_thread(self._write, seq, snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _write(self, seq: int, snapshot: dict) -> None:
        with self._write_lock:
            # Worker threads may finish out of order; never let an older table overwrite a newer one.
            if seq <= self._written_seq:
                return
            try:
                self.persistence.save(snapshot)
            except Exception as ex:
                json_log("error", "cart.persist_failed", seq=seq, error=str(ex))
                return
            self._written_seq = seq

    async def flush(self) -> None:
        """Wait for persistence writes scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
