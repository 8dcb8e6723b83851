from decimal import Decimal

import pytest

from kasir.app.cart import CartLine, CartStore
from kasir.app.checkout import CheckoutService, compute_change, compute_checkout_totals, transaction_code
from kasir.app.errors import FetchError, ValidationError
from kasir.app.settings_repo import SettingsRepo
from kasir.tests.fakes import InMemoryBackend, MemoryCartPersistence


def _service(tax_rate=None, lines=()):
    tables = {"settings": [], "transactions": [], "transaction_items": []}
    if tax_rate is not None:
        tables["settings"].append({"key": "tax_rate", "value": tax_rate})
    backend = InMemoryBackend(tables)
    cart = CartStore(MemoryCartPersistence())
    cart.set_active_user("u1")
    for product in lines:
        cart.add_item(product)
    return backend, cart, CheckoutService(backend, cart, SettingsRepo(backend))


def test_totals_apply_percentage_tax_rounded_half_up():
    lines = [CartLine("p1", "Kopi", Decimal("12345"), 1)]
    totals = compute_checkout_totals(lines, "11")
    assert totals.subtotal == Decimal("12345")
    assert totals.tax_amount == Decimal("1357.95")
    assert totals.total == Decimal("13702.95")


def test_totals_reject_negative_rate():
    with pytest.raises(ValidationError):
        compute_checkout_totals([], -1)


def test_change_and_code():
    assert compute_change(Decimal("75000"), 100000) == Decimal("25000")
    assert compute_change(Decimal("75000"), "50000") == Decimal("-25000")
    assert transaction_code("1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed") == "TXN-1b9d6bcd"


@pytest.mark.asyncio
async def test_cash_checkout_writes_transaction_items_and_clears_cart():
    kopi = {"id": "p1", "name": "Kopi", "price": 25000}
    backend, cart, svc = _service(tax_rate="10", lines=[kopi, kopi, kopi])

    out = await svc.checkout("u1", "Cash", cash_received=100000)

    tx = out["transaction"]
    assert tx["payment_method"] == "cash"
    assert tx["total_amount"] == Decimal("75000")
    assert tx["tax"] == Decimal("7500.00")
    assert tx["final_amount"] == Decimal("82500.00")
    assert tx["cash_change"] == Decimal("17500.00")
    assert tx["transaction_code"] == f"TXN-{tx['id'][:8]}"
    assert backend.tables["transaction_items"] == [
        {
            "transaction_id": tx["id"],
            "product_id": "p1",
            "quantity": 3,
            "price": Decimal("25000"),
            "total_price": Decimal("75000"),
        }
    ]
    assert out["receipt_lines"] == [{"product_name": "Kopi", "quantity": 3, "price": Decimal("25000")}]
    assert cart.get_lines() == []


@pytest.mark.asyncio
async def test_cash_short_of_total_is_rejected_and_cart_kept():
    backend, cart, svc = _service(lines=[{"id": "p1", "name": "Kopi", "price": 25000}])
    with pytest.raises(ValidationError):
        await svc.checkout("u1", "cash", cash_received=10000)
    assert backend.inserts == []
    assert cart.get_item_count() == 1


@pytest.mark.asyncio
async def test_qris_checkout_has_no_cash_fields():
    backend, cart, svc = _service(lines=[{"id": "p1", "name": "Kopi", "price": 25000}])
    out = await svc.checkout("u1", "qris")
    assert "cash_change" not in out["transaction"]
    assert out["totals"].tax_amount == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["", "card", None])
async def test_unknown_payment_method_is_rejected(method):
    backend, cart, svc = _service(lines=[{"id": "p1", "name": "Kopi", "price": 1}])
    with pytest.raises(ValidationError):
        await svc.checkout("u1", method)


@pytest.mark.asyncio
async def test_empty_cart_is_rejected():
    backend, cart, svc = _service()
    with pytest.raises(ValidationError) as exc_info:
        await svc.checkout("u1", "cash")
    assert exc_info.value.message == "cart is empty"


@pytest.mark.asyncio
async def test_backend_failure_keeps_cart():
    backend, cart, svc = _service(lines=[{"id": "p1", "name": "Kopi", "price": 1000}])
    backend.fail = "insert failed"
    with pytest.raises(FetchError):
        await svc.checkout("u1", "qris")
    assert cart.get_item_count() == 1


@pytest.mark.asyncio
async def test_quote_uses_stored_tax_rate():
    backend, cart, svc = _service(tax_rate="5", lines=[{"id": "p1", "name": "Kopi", "price": 1000}])
    totals = await svc.quote()
    assert totals.tax_rate == Decimal("5")
    assert totals.total == Decimal("1050.00")
