from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _to_stripped_str(v):
    if v is None:
        return ""
    return str(v).strip()


def _to_optional_id(v):
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _to_optional_when(v):
    if v is None or isinstance(v, (date, datetime)):
        return v
    s = str(v).strip()
    if not s:
        return None
    if len(s) == 10:
        return date.fromisoformat(s)
    # fromisoformat does not take a trailing "Z" before Python 3.11.
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s)


# Payment methods the app records on transactions; "" means "any" in report filters.
PaymentMethod = Annotated[Literal["cash", "qris"], BeforeValidator(_to_lower_str)]
PaymentMethodFilter = Annotated[Literal["", "cash", "qris"], BeforeValidator(lambda v: _to_lower_str(v) or "")]

SearchText = Annotated[str, BeforeValidator(_to_stripped_str), StringConstraints(max_length=200)]
OptionalId = Annotated[Optional[str], BeforeValidator(_to_optional_id)]
# A bare date means the whole day; datetimes are used as-is (naive ones are taken as UTC).
OptionalWhen = Annotated[Optional[Union[datetime, date]], BeforeValidator(_to_optional_when)]

Username = Annotated[str, BeforeValidator(_to_stripped_str), StringConstraints(min_length=1, max_length=64)]
