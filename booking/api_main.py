from __future__ import annotations

import logging
import sys
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Path, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm

from .auth_security import create_access_token, get_subject
from .auth_service import authenticate, create_user, get_user_by_id
from .config import LOG_LEVEL
from .db import init_db
from .errors import BookingError, ValidationError
from .models import User
from .schemas import MAX_ID, AppointmentRequest, MeOut, RegisterIn, TokenOut, format_errors, parse_appointment_request
from .seed import seed_base
from .services import AppointmentService, build_service

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

app = FastAPI(title="Booking API", version="1.0.0")



# Startup

@app.on_event("startup")
def startup() -> None:
    # Tables, demo data (idempotent) and the one service instance
    init_db()
    seed_base()
    app.state.service = build_service()
    logger.info("Booking API ready")



# Errors

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    content: dict[str, Any] = {"error": exc.message}
    if isinstance(exc, ValidationError) and exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # malformed JSON, bad query or path parameters
    return await booking_error_handler(request, ValidationError(format_errors(exc.errors())))



# Dependencies

def get_service(request: Request) -> AppointmentService:
    return request.app.state.service


def get_current_user(
    token: str = Depends(oauth2_scheme),
    service: AppointmentService = Depends(get_service),
) -> User:
    # stray spaces / quotes pasted along with the token
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    u = get_user_by_id(user_id, factory=service.session_factory)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return u



# AUTH endpoints

@app.post("/api/auth/register")
def register(payload: RegisterIn, service: AppointmentService = Depends(get_service)) -> dict[str, Any]:
    try:
        user_id = create_user(
            payload.name,
            payload.email,
            payload.password,
            provider=payload.provider,
            factory=service.session_factory,
        )
        return {"ok": True, "user_id": user_id}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/auth/login", response_model=TokenOut)
def login(
    form: OAuth2PasswordRequestForm = Depends(),
    service: AppointmentService = Depends(get_service),
) -> TokenOut:
    u = authenticate(form.username, form.password, factory=service.session_factory)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(subject=u.id, extra={"name": u.name, "provider": u.provider})
    return TokenOut(access_token=token)


@app.get("/api/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)) -> MeOut:
    return MeOut(id=user.id, name=user.name, email=user.email, provider=user.provider)



# PUBLIC endpoints (no JWT)

@app.get("/api/providers")
def api_providers(service: AppointmentService = Depends(get_service)) -> list[dict]:
    return service.list_providers()



# PROTECTED endpoints (JWT)

@app.get("/api/appointments")
def api_list_appointments(
    page: int = Query(1, ge=1),
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_service),
) -> list[dict]:
    return service.list(user.id, page=page)


@app.post("/api/appointments")
def api_create_appointment(
    payload: Any = Body(None),
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_service),
) -> dict[str, Any]:
    parsed = parse_appointment_request(payload)
    if not isinstance(parsed, AppointmentRequest):
        raise ValidationError(parsed)
    return service.store(user.id, parsed.provider_id, parsed.date)


@app.delete("/api/appointments/{appointment_id}")
def api_cancel_appointment(
    appointment_id: int = Path(..., ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_service),
) -> dict[str, Any]:
    return service.cancel(appointment_id, user.id)


@app.get("/api/notifications")
def api_notifications(
    unread: bool = False,
    limit: int = Query(20, ge=1, le=200),
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_service),
) -> list[dict]:
    return service.list_notifications(user.id, unread_only=unread, limit=limit)


@app.put("/api/notifications/{notification_id}")
def api_mark_notification_read(
    notification_id: int = Path(..., ge=1, le=MAX_ID),
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_service),
) -> dict[str, Any]:
    return service.mark_notification_read(notification_id, user.id)
