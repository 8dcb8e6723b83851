from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from .errors import BackendError, FetchError, ValidationError
from .logs import json_log
from .money import ZERO, to_decimal
from .query import Backend, Embed, Query

PERIODS = ("all", "today", "week", "month")


async def fetch_user_transactions(backend: Backend, user_id) -> list[dict]:
    if user_id in (None, ""):
        return []
    query = Query("transactions").select("*").eq("id_user", user_id).order("transaction_time", ascending=False)
    try:
        res = await backend.fetch(query)
    except BackendError as ex:
        json_log("error", "history.fetch_failed", user_id=user_id, error=str(ex))
        raise FetchError(str(ex)) from ex
    return res.rows


def period_start(period: str, now: datetime) -> Optional[datetime]:
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return day
    if period == "week":
        # Weeks start on Sunday.
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if period == "month":
        return day.replace(day=1)
    if period == "all":
        return None
    raise ValidationError(f"period must be one of: {', '.join(PERIODS)}")


def _ts(v) -> Optional[datetime]:
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    if isinstance(v, str) and v:
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def filter_by_period(transactions: list[dict], period: str, now: Optional[datetime] = None) -> list[dict]:
    # Periods start at the device's local midnight.
    now = now or datetime.now().astimezone()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = period_start(period, now)
    if start is None:
        return list(transactions)
    out = []
    for t in transactions:
        ts = _ts(t.get("transaction_time"))
        if ts is not None and ts >= start:
            out.append(t)
    return out


def summarize(transactions: list[dict]) -> dict:
    total: Decimal = sum((to_decimal(t.get("final_amount")) for t in transactions), ZERO)
    return {"total": total, "count": len(transactions)}


async def fetch_transaction_items(backend: Backend, transaction_id: str) -> list[dict]:
    query = (
        Query("transaction_items")
        .select("*", Embed("products", ("name",), many=False, alias="product"))
        .eq("transaction_id", transaction_id)
    )
    try:
        res = await backend.fetch(query)
    except BackendError as ex:
        json_log("error", "history.items_failed", transaction_id=transaction_id, error=str(ex))
        raise FetchError(str(ex)) from ex
    out = []
    for it in res.rows:
        product = it.get("product") or {}
        out.append({**it, "name": product.get("name") or "Unknown Product"})
    return out
