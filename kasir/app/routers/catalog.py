from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from .. import catalog
from ..catalog import ProductIn, ProductPatch
from ..deps import get_current_user, get_services
from ..errors import FetchError
from ..services import Services

router = APIRouter(tags=["catalog"], dependencies=[Depends(get_current_user)])


@router.get("/products")
async def list_products(active_only: bool = False, services: Services = Depends(get_services)):
    return {"products": await catalog.fetch_products(services.backend, active_only=active_only)}


@router.get("/categories")
async def list_categories(services: Services = Depends(get_services)):
    return {"categories": await catalog.fetch_categories(services.backend)}


@router.post("/products")
async def create_product(data: ProductIn, services: Services = Depends(get_services)):
    return {"product": await catalog.create_product(services.backend, data)}


@router.patch("/products/{product_id}")
async def update_product(product_id: str, data: ProductPatch, services: Services = Depends(get_services)):
    return {"product": await catalog.update_product(services.backend, product_id, data)}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, services: Services = Depends(get_services)):
    return {"product": await catalog.delete_product(services.backend, product_id)}


@router.post("/products/images")
async def upload_image(
    file: UploadFile = File(...),
    product_id: Optional[str] = Form(default=None),
    services: Services = Depends(get_services),
):
    data = await file.read()
    url = await catalog.upload_product_image(services.storage, data, file.filename or "", file.content_type)
    if not url:
        raise FetchError("image upload failed")
    out = {"url": url}
    if product_id:
        out["product"] = await catalog.update_product(services.backend, product_id, ProductPatch(image=url))
    return out
