from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from ..deps import get_current_user, get_services
from ..reports import ReportQueryEngine
from ..services import Services

router = APIRouter(prefix="/reports", tags=["reports"], dependencies=[Depends(get_current_user)])


def report_out(engine: ReportQueryEngine) -> dict:
    st = engine.state
    totals = engine.get_totals()
    return {
        "filter": st.filter.model_dump() if st.filter else None,
        "transactions": [
            {**r.model_dump(), "product_names": r.product_names, "total_quantity": r.total_quantity}
            for r in st.accumulated
        ],
        "page": st.current_page,
        "has_more": st.has_more,
        "is_fetching": engine.is_fetching,
        "summary": {
            "total_count": totals.total_count,
            "total_amount": totals.total_amount,
            "total_items": totals.total_items_across_loaded_page,
        },
    }


@router.post("/transactions/search")
async def search_transactions(
    filters: Optional[dict[str, Any]] = Body(default=None),
    services: Services = Depends(get_services),
):
    """
    Validates the filter (400 with the user-facing reason) and replaces the report with page 1.
    Body is taken raw so filter problems come back as one readable message instead of a 422.
    """
    await services.reports.search(filters or {})
    return report_out(services.reports)


@router.post("/transactions/more")
async def load_more_transactions(services: Services = Depends(get_services)):
    await services.reports.load_more()
    return report_out(services.reports)


@router.get("/transactions")
def current_report(services: Services = Depends(get_services)):
    return report_out(services.reports)
