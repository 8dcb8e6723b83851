from decimal import Decimal

import pydantic
import pytest

from kasir.app.catalog import (
    ProductIn,
    ProductPatch,
    create_product,
    delete_product,
    fetch_categories,
    fetch_products,
    image_key,
    update_product,
    upload_product_image,
)
from kasir.app.errors import FetchError, ValidationError
from kasir.app.settings_repo import SettingsRepo
from kasir.app.storage.s3 import ObjectStorage, S3Config, get_s3_config
from kasir.tests.fakes import InMemoryBackend


def _catalog():
    return InMemoryBackend(
        {
            "products": [
                {"id": "p1", "name": "Kopi", "price": 1000, "is_active": True, "category_id": "c1",
                 "created_at": "2025-01-01T00:00:00Z"},
                {"id": "p2", "name": "Teh", "price": 500, "is_active": False, "category_id": "c9",
                 "created_at": "2025-01-02T00:00:00Z"},
            ],
            "categories": [{"id": "c1", "name": "Minuman"}, {"id": "c2", "name": "Makanan"}],
        }
    )


class _FakeS3:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def put_object(self, **kw):
        if self.error:
            raise self.error
        self.calls.append(kw)


def _cfg(**kw):
    base = dict(
        endpoint_url="http://minio:9000",
        access_key_id="k",
        secret_access_key="s",
        bucket="product-images",
        region="us-east-1",
        use_ssl=False,
        public_base_url="https://cdn.example/product-images",
    )
    base.update(kw)
    return S3Config(**base)


@pytest.mark.asyncio
async def test_products_newest_first_with_category_name():
    backend = _catalog()
    rows = await fetch_products(backend)
    assert [(r["id"], r["category_name"]) for r in rows] == [("p2", "Unknown"), ("p1", "Minuman")]

    active = await fetch_products(backend, active_only=True)
    assert [r["id"] for r in active] == ["p1"]


@pytest.mark.asyncio
async def test_categories_sorted_by_name():
    rows = await fetch_categories(_catalog())
    assert [r["name"] for r in rows] == ["Makanan", "Minuman"]


@pytest.mark.asyncio
async def test_create_update_and_soft_delete():
    backend = _catalog()
    created = await create_product(backend, ProductIn(name="Roti", price=Decimal("12000"), stock=5))
    assert created["price"] == Decimal("12000")
    assert created["is_active"] is True

    updated = await update_product(backend, "p1", ProductPatch(price=Decimal("1500")))
    assert updated["price"] == Decimal("1500")

    deleted = await delete_product(backend, "p1")
    assert deleted["is_active"] is False

    with pytest.raises(ValidationError):
        await update_product(backend, "p1", ProductPatch())
    with pytest.raises(ValidationError):
        await update_product(backend, "missing", ProductPatch(stock=1))


def test_product_validation_rejects_negative_price():
    with pytest.raises(pydantic.ValidationError):
        ProductIn(name="Roti", price=-1)


@pytest.mark.asyncio
async def test_catalog_backend_failure_is_fetch_error():
    backend = _catalog()
    backend.fail = "down"
    with pytest.raises(FetchError):
        await fetch_products(backend)


def test_image_key_keeps_extension():
    assert image_key("Photo.PNG", now_ms=1700000000000) == "images/1700000000000.png"
    assert image_key("", now_ms=1) == "images/1.jpg"


@pytest.mark.asyncio
async def test_upload_returns_public_url():
    s3 = _FakeS3()
    url = await upload_product_image(ObjectStorage(_cfg(), client=s3), b"\x89PNG", "a.png")
    assert url.startswith("https://cdn.example/product-images/images/")
    assert url.endswith(".png")
    assert s3.calls[0]["Bucket"] == "product-images"
    assert s3.calls[0]["ContentType"] == "image/png"


@pytest.mark.asyncio
async def test_upload_failure_returns_none():
    storage = ObjectStorage(_cfg(), client=_FakeS3(error=RuntimeError("denied")))
    assert await upload_product_image(storage, b"data", "a.jpg") is None
    assert await upload_product_image(storage, b"", "a.jpg") is None


def test_s3_config_from_env(monkeypatch):
    for name in ("S3_ENDPOINT_URL", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_BUCKET", "S3_PUBLIC_BASE_URL", "S3_USE_SSL"):
        monkeypatch.delenv(name, raising=False)
    assert get_s3_config() is None

    monkeypatch.setenv("S3_ENDPOINT_URL", "http://minio:9000/")
    monkeypatch.setenv("S3_ACCESS_KEY_ID", "k")
    monkeypatch.setenv("S3_SECRET_ACCESS_KEY", "s")
    monkeypatch.setenv("S3_BUCKET", "product-images")
    cfg = get_s3_config()
    assert cfg.public_base_url == "http://minio:9000/product-images"
    assert cfg.use_ssl is True


def test_unconfigured_storage_refuses_uploads(monkeypatch):
    monkeypatch.delenv("S3_ENDPOINT_URL", raising=False)
    with pytest.raises(RuntimeError):
        ObjectStorage().upload("images/x.jpg", b"x", "image/jpeg")


@pytest.mark.asyncio
async def test_settings_repo_get_set_and_tax_rate():
    backend = InMemoryBackend(
        {"settings": [{"key": "tax_rate", "value": "11"}, {"key": "store_name", "value": "Toko"}]}
    )
    repo = SettingsRepo(backend)
    assert await repo.get("store_name") == "Toko"
    assert await repo.get("missing") is None
    assert await repo.get_tax_rate() == Decimal("11")
    assert [r["key"] for r in await repo.get_all()] == ["store_name", "tax_rate"]

    assert await repo.set("tax_rate", "abc") is True
    assert await repo.get_tax_rate() == Decimal("0")
    assert await repo.set("missing", "1") is False


@pytest.mark.asyncio
async def test_settings_repo_reads_degrade_and_writes_raise_on_backend_errors():
    backend = InMemoryBackend({"settings": []})
    backend.fail = "down"
    repo = SettingsRepo(backend)
    assert await repo.get("tax_rate") is None
    assert await repo.get_all() == []
    with pytest.raises(FetchError):
        await repo.set("tax_rate", "10")
