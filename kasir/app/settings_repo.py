from decimal import Decimal
from typing import Any, Optional

from .errors import BackendError, FetchError
from .logs import json_log
from .money import ZERO, to_decimal
from .query import Backend, Query

TAX_RATE_KEY = "tax_rate"


class SettingsRepo:
    """Key/value rows of the backend `settings` table (tax rate, store info, printer)."""

    def __init__(self, backend: Backend):
        self.backend = backend

    async def get(self, key: str) -> Optional[Any]:
        try:
            res = await self.backend.fetch(Query("settings").select("value").eq("key", key).limit(1))
        except BackendError as ex:
            json_log("error", "settings.get_failed", key=key, error=str(ex))
            return None
        if not res.rows:
            return None
        return res.rows[0].get("value")

    async def set(self, key: str, value: Any) -> bool:
        """False when no row has `key`; backend failures raise FetchError."""
        try:
            updated = await self.backend.update("settings", {"value": value}, key=key)
        except BackendError as ex:
            json_log("error", "settings.update_failed", key=key, error=str(ex))
            raise FetchError(str(ex)) from ex
        return bool(updated)

    async def get_all(self) -> list[dict]:
        try:
            res = await self.backend.fetch(Query("settings").select("*").order("key"))
        except BackendError as ex:
            json_log("error", "settings.list_failed", error=str(ex))
            return []
        return res.rows

    async def get_tax_rate(self) -> Decimal:
        """Tax rate in percent; 0 when unset or not a number."""
        rate = to_decimal(await self.get(TAX_RATE_KEY))
        return rate if rate > ZERO else ZERO
