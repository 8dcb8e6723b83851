from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_current_user, get_services
from ..receipt import render_receipt
from ..config import settings
from ..services import Services
from ..validation import PaymentMethod

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutIn(BaseModel):
    method: PaymentMethod
    cash_received: Optional[Decimal] = Field(default=None, ge=0)
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@router.get("/quote")
async def quote(user=Depends(get_current_user), services: Services = Depends(get_services)):
    totals = await services.checkout.quote()
    return {
        "subtotal": totals.subtotal,
        "tax_rate": totals.tax_rate,
        "tax_amount": totals.tax_amount,
        "total": totals.total,
    }


@router.post("")
async def checkout(data: CheckoutIn, user=Depends(get_current_user), services: Services = Depends(get_services)):
    out = await services.checkout.checkout(
        user["id"],
        data.method,
        cash_received=data.cash_received,
        latitude=data.latitude,
        longitude=data.longitude,
    )
    return {
        "transaction": out["transaction"],
        "items": out["items"],
        "receipt": render_receipt(out["transaction"], out["receipt_lines"], settings.store_name, settings.store_address),
    }
