from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..cart import CartStore
from ..deps import get_current_user, get_services
from ..services import Services

router = APIRouter(prefix="/cart", tags=["cart"], dependencies=[Depends(get_current_user)])


class CartItemIn(BaseModel):
    id: str
    name: str = ""
    price: Decimal = Field(ge=0)
    image_url: Optional[str] = None


class QuantityIn(BaseModel):
    quantity: int


def cart_out(cart: CartStore) -> dict:
    lines = cart.get_lines()
    return {
        "user_id": cart.active_user_id,
        "items": [
            {
                "product_id": ln.product_id,
                "name": ln.name,
                "price": ln.unit_price,
                "quantity": ln.quantity,
                "line_total": ln.line_total,
            }
            for ln in lines
        ],
        "item_count": cart.get_item_count(),
        "subtotal": cart.get_subtotal(),
    }


@router.get("")
def get_cart(services: Services = Depends(get_services)):
    return cart_out(services.cart)


@router.post("/items")
async def add_item(data: CartItemIn, services: Services = Depends(get_services)):
    services.cart.add_item(data.model_dump())
    return cart_out(services.cart)


@router.put("/items/{product_id}")
async def set_quantity(product_id: str, data: QuantityIn, services: Services = Depends(get_services)):
    services.cart.set_quantity(product_id, data.quantity)
    return cart_out(services.cart)


@router.delete("/items/{product_id}")
async def remove_item(product_id: str, services: Services = Depends(get_services)):
    services.cart.remove_item(product_id)
    return cart_out(services.cart)


@router.delete("")
async def clear_cart(services: Services = Depends(get_services)):
    services.cart.clear()
    return cart_out(services.cart)
