from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel

from .config import settings
from .errors import BackendError, FetchError, ValidationError
from .logs import json_log
from .money import ZERO, to_decimal
from .query import Backend, Embed, Query
from .validation import OptionalId, OptionalWhen, PaymentMethodFilter, SearchText


class ReportFilter(BaseModel):
    transaction_id: SearchText = ""
    product_name: SearchText = ""
    user_id: OptionalId = None
    from_date: OptionalWhen = None
    to_date: OptionalWhen = None
    payment_method: PaymentMethodFilter = ""

    def is_empty(self) -> bool:
        return not (
            self.transaction_id
            or self.product_name
            or self.user_id
            or self.from_date
            or self.to_date
            or self.payment_method
        )


class TransactionItem(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    sku: Optional[str] = None
    unit_price: Decimal = ZERO
    quantity: int = 0
    total_price: Decimal = ZERO


class TransactionRecord(BaseModel):
    id: str
    code: str
    time: Optional[datetime] = None
    payment_method: Optional[str] = None
    final_amount: Decimal = ZERO
    user_id: Optional[str] = None
    items: list[TransactionItem] = []

    @property
    def product_names(self) -> str:
        names = [i.product_name for i in self.items if i.product_name]
        return ", ".join(names) or "No products"

    @property
    def total_quantity(self) -> int:
        return sum(i.quantity for i in self.items)


@dataclass(frozen=True)
class ReportPage:
    rows: list[TransactionRecord]
    # Rows the backend returned before product-name narrowing.
    fetched_count: int


@dataclass(frozen=True)
class ReportTotals:
    total_count: int
    total_amount: Decimal
    total_items_across_loaded_page: int


@dataclass(frozen=True)
class ReportSessionState:
    filter: Optional[ReportFilter] = None
    accumulated: tuple = ()
    current_page: int = 0
    has_more: bool = False
    total_amount: Decimal = ZERO
    total_count: int = 0
    searched_at: Optional[datetime] = field(default=None, compare=False)


TRANSACTION_COLUMNS = (
    "id",
    "transaction_code",
    "transaction_time",
    "payment_method",
    "final_amount",
    "id_user",
    Embed(
        "transaction_items",
        ("product_id", "quantity", "total_price", Embed("products", ("id", "name", "sku", "price"), many=False)),
    ),
)

AGGREGATE_COLUMNS = (
    "id",
    "final_amount",
    Embed("transaction_items", ("product_id", Embed("products", ("name",), many=False))),
)


def validate_report_filter(raw: Union[ReportFilter, Mapping[str, Any], None]) -> ReportFilter:
    """
    Returns the normalized filter or raises ValidationError with the message shown to the user.
    """
    if isinstance(raw, ReportFilter):
        f = raw
    else:
        try:
            f = ReportFilter.model_validate(dict(raw or {}))
        except pydantic.ValidationError as ex:
            fields = sorted({str(e["loc"][0]) for e in ex.errors() if e.get("loc")})
            raise ValidationError(f"invalid filter: {', '.join(fields) or 'input'}") from ex

    if f.is_empty():
        raise ValidationError("Please apply at least one filter")
    if bool(f.from_date) != bool(f.to_date):
        raise ValidationError("Please fill both date fields")
    if f.from_date and f.to_date and lower_bound(f.from_date) > upper_bound(f.to_date):
        raise ValidationError('"To Date" cannot be before "From Date"')
    return f


def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def lower_bound(v: Union[date, datetime]) -> datetime:
    if isinstance(v, datetime):
        return _as_utc(v)
    return datetime.combine(v, time.min, tzinfo=timezone.utc)


def upper_bound(v: Union[date, datetime]) -> datetime:
    if isinstance(v, datetime):
        return _as_utc(v)
    return datetime.combine(v, time.max, tzinfo=timezone.utc)


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def apply_report_filter(query: Query, f: ReportFilter) -> Query:
    """Everything the backend can evaluate; product name is left to narrow_by_product_name."""
    if f.from_date:
        query.gte("transaction_time", lower_bound(f.from_date))
    if f.to_date:
        query.lte("transaction_time", upper_bound(f.to_date))
    if f.transaction_id:
        query.ilike("transaction_code", f"%{_escape_like(f.transaction_id)}%")
    if f.user_id:
        query.eq("id_user", f.user_id)
    if f.payment_method:
        query.ilike("payment_method", f.payment_method)
    return query


def narrow_by_product_name(rows: list[dict], product_name: str) -> list[dict]:
    """
    Post-fetch narrowing: keep transactions with any purchased item whose product name
    contains `product_name` (case-insensitive). The backend cannot filter parents on a
    nested relation, so a narrowed page may hold fewer rows than the page size even
    when more matches exist further on.
    """
    needle = (product_name or "").strip().lower()
    if not needle:
        return list(rows)
    out = []
    for r in rows:
        for it in r.get("transaction_items") or []:
            prod = (it or {}).get("products") or {}
            if needle in str(prod.get("name") or "").lower():
                out.append(r)
                break
    return out


def row_to_record(row: Mapping[str, Any]) -> TransactionRecord:
    items = []
    for it in row.get("transaction_items") or []:
        prod = it.get("products") or {}
        qty = int(it.get("quantity") or 0)
        price = to_decimal(prod.get("price"))
        items.append(
            TransactionItem(
                product_id=None if it.get("product_id") is None else str(it.get("product_id")),
                product_name=prod.get("name"),
                sku=prod.get("sku"),
                unit_price=price,
                quantity=qty,
                total_price=to_decimal(it.get("total_price"), default=price * qty),
            )
        )
    ts = row.get("transaction_time")
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    return TransactionRecord(
        id=str(row["id"]),
        code=str(row.get("transaction_code") or ""),
        time=ts,
        payment_method=row.get("payment_method"),
        final_amount=to_decimal(row.get("final_amount")),
        user_id=None if row.get("id_user") is None else str(row.get("id_user")),
        items=items,
    )


class ReportQueryEngine:
    """
    Transaction report for a filter: one page of rows plus the amount/count over the
    whole matching set, with "load more" pagination on top.

    The page and the aggregate are separate backend calls (the backend cannot window and
    aggregate in one round trip), so they can drift if data changes in between.
    Every search bumps a generation number; responses from an older generation are
    dropped instead of overwriting newer results.
    """

    def __init__(self, backend: Backend, page_size: Optional[int] = None):
        self.backend = backend
        self.page_size = page_size or settings.report_page_size
        self._state = ReportSessionState()
        self._fetching = False
        self._generation = 0

    @property
    def state(self) -> ReportSessionState:
        return self._state

    @property
    def is_fetching(self) -> bool:
        return self._fetching

    async def _fetch_page(self, f: ReportFilter, page: int) -> ReportPage:
        start = (page - 1) * self.page_size
        query = apply_report_filter(Query("transactions").select(*TRANSACTION_COLUMNS), f)
        query.order("transaction_time", ascending=False).range(start, start + self.page_size - 1)
        res = await self.backend.fetch(query)
        narrowed = narrow_by_product_name(res.rows, f.product_name)
        return ReportPage(rows=[row_to_record(r) for r in narrowed], fetched_count=len(res.rows))

    async def _fetch_aggregate(self, f: ReportFilter) -> tuple[Decimal, int]:
        # No range(): the total covers every matching transaction, not just the loaded pages.
        query = apply_report_filter(Query("transactions").select(*AGGREGATE_COLUMNS), f)
        res = await self.backend.fetch(query)
        rows = narrow_by_product_name(res.rows, f.product_name)
        total = sum((to_decimal(r.get("final_amount")) for r in rows), ZERO)
        return total, len(rows)

    async def search(self, raw_filter) -> ReportSessionState:
        f = validate_report_filter(raw_filter)
        self._generation += 1
        gen = self._generation
        self._fetching = True
        json_log("info", "reports.search", generation=gen, filter=f.model_dump(exclude_defaults=True))
        try:
            page, (total_amount, total_count) = await asyncio.gather(
                self._fetch_page(f, 1),
                self._fetch_aggregate(f),
            )
        except BackendError as ex:
            json_log("error", "reports.fetch_failed", op="search", generation=gen, error=str(ex))
            raise FetchError(str(ex)) from ex
        finally:
            if gen == self._generation:
                self._fetching = False

        if gen != self._generation:
            json_log("info", "reports.stale_response", op="search", generation=gen, current=self._generation)
            return self._state

        rows = tuple(page.rows)
        # Page and aggregate are separate reads; never report fewer matches than rows shown.
        total_count = max(total_count, len(rows))
        self._state = ReportSessionState(
            filter=f,
            accumulated=rows,
            current_page=1,
            # Narrowing can empty a page the backend filled; only a backend page of zero rows ends pagination.
            has_more=page.fetched_count > 0 and len(rows) < total_count,
            total_amount=total_amount,
            total_count=total_count,
            searched_at=datetime.now(timezone.utc),
        )
        if page.fetched_count != len(rows):
            json_log(
                "info",
                "reports.narrowed",
                page=1,
                fetched=page.fetched_count,
                kept=len(rows),
            )
        return self._state

    async def load_more(self) -> ReportSessionState:
        st = self._state
        if self._fetching or not st.has_more or st.filter is None or len(st.accumulated) >= st.total_count:
            return st

        gen = self._generation
        next_page = st.current_page + 1
        self._fetching = True
        try:
            page = await self._fetch_page(st.filter, next_page)
        except BackendError as ex:
            json_log("error", "reports.fetch_failed", op="load_more", page=next_page, error=str(ex))
            raise FetchError(str(ex)) from ex
        finally:
            if gen == self._generation:
                self._fetching = False

        if gen != self._generation:
            json_log("info", "reports.stale_response", op="load_more", generation=gen, current=self._generation)
            return self._state

        cur = self._state
        if page.fetched_count == 0:
            # Count and pages come from different reads; an empty backend page ends pagination regardless.
            self._state = replace(cur, has_more=False)
            return self._state
        if not page.rows:
            # Every row on this page was narrowed away; move past it and keep going by the count.
            self._state = replace(
                cur,
                current_page=next_page,
                has_more=len(cur.accumulated) < cur.total_count,
            )
            return self._state

        accumulated = cur.accumulated + tuple(page.rows)
        total_count = max(cur.total_count, len(accumulated))
        self._state = replace(
            cur,
            accumulated=accumulated,
            current_page=next_page,
            has_more=len(cur.accumulated) + len(page.rows) < total_count,
            total_count=total_count,
        )
        return self._state

    def get_totals(self) -> ReportTotals:
        st = self._state
        return ReportTotals(
            total_count=st.total_count,
            total_amount=st.total_amount,
            total_items_across_loaded_page=sum(r.total_quantity for r in st.accumulated),
        )
