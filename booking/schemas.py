from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from .timeutil import to_utc_naive

# largest id a 64-bit INTEGER column can hold
MAX_ID = 2**63 - 1


# Auth

class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    provider: bool = False


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: int
    name: str
    email: str
    provider: bool


# Appointments

class AppointmentCreateIn(BaseModel):
    provider_id: int = Field(..., ge=1, le=MAX_ID)
    date: datetime


@dataclass(frozen=True)
class AppointmentRequest:
    provider_id: int
    date: datetime  # naive UTC


def parse_appointment_request(payload: Any) -> AppointmentRequest | list[str]:
    """
    Validate the booking body.
    Returns the parsed request, or the list of problems found.
    """
    if not isinstance(payload, dict):
        return ["body: must be a JSON object"]
    try:
        data = AppointmentCreateIn.model_validate(payload)
    except PydanticValidationError as e:
        return format_errors(e.errors())
    try:
        date = to_utc_naive(data.date)
    except OverflowError:
        return ["date: out of the supported range"]
    return AppointmentRequest(provider_id=data.provider_id, date=date)


def format_errors(errors: list[dict[str, Any]]) -> list[str]:
    """pydantic errors as "field: message" lines."""
    return [f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in errors]
