from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from ..deps import get_current_user, get_services
from ..services import Services

router = APIRouter(prefix="/settings", tags=["settings"], dependencies=[Depends(get_current_user)])


@router.get("")
async def list_settings(services: Services = Depends(get_services)):
    return {"settings": await services.settings_repo.get_all()}


@router.get("/{key}")
async def get_setting(key: str, services: Services = Depends(get_services)):
    value = await services.settings_repo.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"setting {key} not found")
    return {"key": key, "value": value}


@router.put("/{key}")
async def put_setting(key: str, value: Any = Body(..., embed=True), services: Services = Depends(get_services)):
    if not await services.settings_repo.set(key, value):
        raise HTTPException(status_code=404, detail=f"setting {key} not found")
    return {"key": key, "value": value}
