from fastapi import APIRouter, Depends

from ..deps import get_current_user, get_services
from ..history import fetch_transaction_items, fetch_user_transactions, filter_by_period, summarize
from ..services import Services

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def list_history(period: str = "all", user=Depends(get_current_user), services: Services = Depends(get_services)):
    rows = await fetch_user_transactions(services.backend, user["id"])
    rows = filter_by_period(rows, period)
    return {"period": period, "transactions": rows, "summary": summarize(rows)}


@router.get("/{transaction_id}/items")
async def transaction_items(transaction_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return {"items": await fetch_transaction_items(services.backend, transaction_id)}
