from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kasir.app.errors import FetchError, ValidationError
from kasir.app.history import (
    fetch_transaction_items,
    fetch_user_transactions,
    filter_by_period,
    period_start,
    summarize,
)
from kasir.tests.fakes import InMemoryBackend

# Wednesday.
NOW = datetime(2025, 3, 12, 15, 30, tzinfo=timezone.utc)


def _tx(tid, when, amount, user="u1"):
    return {"id": tid, "transaction_time": when, "final_amount": amount, "id_user": user}


def test_week_starts_on_sunday():
    assert period_start("week", NOW) == datetime(2025, 3, 9, tzinfo=timezone.utc)
    sunday = datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)
    assert period_start("week", sunday) == datetime(2025, 3, 9, tzinfo=timezone.utc)


def test_period_starts():
    assert period_start("today", NOW) == datetime(2025, 3, 12, tzinfo=timezone.utc)
    assert period_start("month", NOW) == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert period_start("all", NOW) is None
    with pytest.raises(ValidationError):
        period_start("year", NOW)


def test_filter_by_period_and_summary():
    txs = [
        _tx("a", "2025-03-12T08:00:00Z", "10000"),
        _tx("b", datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc), 5000),
        _tx("c", "2025-03-02T09:00:00+00:00", 2500),
        _tx("d", "2025-02-27T09:00:00Z", 1000),
        _tx("e", None, 99),
    ]
    assert [t["id"] for t in filter_by_period(txs, "today", NOW)] == ["a"]
    assert [t["id"] for t in filter_by_period(txs, "week", NOW)] == ["a", "b"]
    assert [t["id"] for t in filter_by_period(txs, "month", NOW)] == ["a", "b", "c"]
    assert len(filter_by_period(txs, "all", NOW)) == 5

    summary = summarize(filter_by_period(txs, "month", NOW))
    assert summary == {"total": Decimal("17500"), "count": 3}


def test_naive_now_is_taken_as_utc():
    txs = [_tx("a", "2025-03-12T00:30:00Z", 1)]
    assert len(filter_by_period(txs, "today", datetime(2025, 3, 12, 23, 0))) == 1


def test_today_starts_at_local_midnight_of_now():
    wib = timezone(timedelta(hours=7))
    # 00:30 WIB on the 12th is still the 11th in UTC.
    txs = [_tx("a", "2025-03-11T17:30:00Z", 1), _tx("b", "2025-03-11T16:59:00Z", 1)]
    kept = filter_by_period(txs, "today", datetime(2025, 3, 12, 9, 0, tzinfo=wib))
    assert [t["id"] for t in kept] == ["a"]


def test_default_now_uses_device_local_time():
    local_midnight = datetime.now().astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
    txs = [
        _tx("early", (local_midnight + timedelta(seconds=1)).isoformat(), 1),
        _tx("yesterday", (local_midnight - timedelta(minutes=1)).isoformat(), 1),
    ]
    assert [t["id"] for t in filter_by_period(txs, "today")] == ["early"]


@pytest.mark.asyncio
async def test_user_transactions_newest_first_and_scoped_to_user():
    backend = InMemoryBackend(
        {
            "transactions": [
                _tx("a", "2025-03-01T08:00:00Z", 1),
                _tx("b", "2025-03-05T08:00:00Z", 2),
                _tx("c", "2025-03-06T08:00:00Z", 3, user="u2"),
            ]
        }
    )
    rows = await fetch_user_transactions(backend, "u1")
    assert [r["id"] for r in rows] == ["b", "a"]
    assert await fetch_user_transactions(backend, None) == []


@pytest.mark.asyncio
async def test_items_carry_product_name_with_fallback():
    backend = InMemoryBackend(
        {
            "transaction_items": [
                {"id": 1, "transaction_id": "t1", "product_id": "p1", "quantity": 2, "price": 1000},
                {"id": 2, "transaction_id": "t1", "product_id": "gone", "quantity": 1, "price": 500},
                {"id": 3, "transaction_id": "t2", "product_id": "p1", "quantity": 1, "price": 1000},
            ],
            "products": [{"id": "p1", "name": "Kopi"}],
        }
    )
    items = await fetch_transaction_items(backend, "t1")
    assert [(i["id"], i["name"]) for i in items] == [(1, "Kopi"), (2, "Unknown Product")]


@pytest.mark.asyncio
async def test_history_backend_failure_raises_fetch_error():
    backend = InMemoryBackend()
    backend.fail = "down"
    with pytest.raises(FetchError):
        await fetch_user_transactions(backend, "u1")
