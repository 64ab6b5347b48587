from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload, sessionmaker

from .config import ServiceSettings
from .db import SessionLocal, db_session
from .errors import (
    AlreadyCanceledError,
    CancellationWindowError,
    ForbiddenError,
    NotAProviderError,
    NotFoundError,
    PastDateError,
    SlotUnavailableError,
    ValidationError,
)
from .mail import MailError, MailSender, get_mail_sender
from .models import Appointment, File, Notification, User
from .schemas import MAX_ID
from .timeutil import format_long, is_before, start_of_hour, to_iso, to_utc_naive, utcnow

logger = logging.getLogger(__name__)

SLOT_INDEX = "uq_appointments_provider_date_active"


def _is_slot_conflict(e: IntegrityError) -> bool:
    msg = str(e.orig)
    return SLOT_INDEX in msg or "appointments.provider_id, appointments.date" in msg


class AppointmentService:
    """
    Booking rules for appointments.

    Built once per process with its collaborators and handed to the HTTP
    layer (and the CLI) explicitly:
    - session_factory: where appointments, users and notifications live
    - mailer: outgoing email for cancellations
    - clock: returns "now" as naive UTC
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        mailer: MailSender,
        clock: Callable[[], datetime] = utcnow,
        settings: ServiceSettings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.mailer = mailer
        self.clock = clock
        self.settings = settings or ServiceSettings()

    # =========================
    # Serialization helpers
    # =========================
    def _avatar_out(self, avatar: File | None) -> dict[str, Any] | None:
        if avatar is None:
            return None
        return {"id": avatar.id, "path": avatar.path, "url": avatar.url(self.settings.app_url)}

    def _provider_out(self, provider: User) -> dict[str, Any]:
        return {"id": provider.id, "name": provider.name, "avatar": self._avatar_out(provider.avatar)}

    @staticmethod
    def _appointment_out(a: Appointment) -> dict[str, Any]:
        return {
            "id": a.id,
            "user_id": a.user_id,
            "provider_id": a.provider_id,
            "date": to_iso(a.date),
            "canceled_at": to_iso(a.canceled_at),
        }

    # =========================
    # Cancellation window
    # =========================
    def can_cancel(self, date: datetime, now: datetime) -> bool:
        window = timedelta(hours=self.settings.cancellation_window_hours)
        if self.settings.legacy_cancellation_window:
            # date + 2h must not be in the past
            return not is_before(date + window, now)
        return not now > date - window

    # =========================
    # Use cases
    # =========================
    def list(self, user_id: int, page: int = 1) -> list[dict[str, Any]]:
        """Active appointments of the user, by date, one page at a time."""
        if page < 1:
            raise ValidationError(["page: must be greater than or equal to 1"])

        size = self.settings.page_size
        if (page - 1) * size > MAX_ID:
            raise ValidationError(["page: out of range"])
        now = self.clock()

        with db_session(self.session_factory) as s:
            q = (
                select(Appointment)
                .options(joinedload(Appointment.provider).joinedload(User.avatar))
                .where(Appointment.user_id == user_id, Appointment.canceled_at.is_(None))
                .order_by(Appointment.date.asc(), Appointment.id.asc())
                .limit(size)
                .offset((page - 1) * size)
            )
            return [
                {
                    "id": a.id,
                    "date": to_iso(a.date),
                    "past": is_before(a.date, now),
                    "cancelable": self.can_cancel(a.date, now),
                    "provider": self._provider_out(a.provider),
                }
                for a in s.scalars(q)
            ]

    def store(self, user_id: int, provider_id: int, date: datetime) -> dict[str, Any]:
        """
        Book provider_id at the hour containing date.
        - the booking user must exist
        - the provider must be a user flagged as provider
        - the slot is truncated to the start of the hour
        - no past slots, no slots already taken
        - notifies the provider once the appointment is saved
        """
        hour_start = start_of_hour(to_utc_naive(date))

        with db_session(self.session_factory) as s:
            customer = s.get(User, user_id)
            if customer is None:
                logger.info(f"Booking rejected: user {user_id} does not exist")
                raise NotFoundError("User not found")
            customer_name = customer.name

            provider = s.execute(
                select(User).where(User.id == provider_id, User.provider.is_(True))
            ).scalar_one_or_none()
            if provider is None:
                logger.info(f"Booking rejected: user {provider_id} is not a provider")
                raise NotAProviderError()

            if is_before(hour_start, self.clock()):
                logger.info(f"Booking rejected: {hour_start.isoformat()} is in the past")
                raise PastDateError()

            taken = s.execute(
                select(Appointment.id)
                .where(
                    Appointment.provider_id == provider_id,
                    Appointment.canceled_at.is_(None),
                    Appointment.date == hour_start,
                )
                .limit(1)
            ).first()
            if taken is not None:
                logger.info(f"Booking rejected: provider {provider_id} busy at {hour_start.isoformat()}")
                raise SlotUnavailableError()

            appointment = Appointment(user_id=user_id, provider_id=provider_id, date=hour_start)
            s.add(appointment)
            try:
                s.flush()
            except IntegrityError as e:
                # another request took the slot between the check and the insert
                if _is_slot_conflict(e):
                    raise SlotUnavailableError() from e
                raise

            result = self._appointment_out(appointment)

        logger.info(f"Appointment {result['id']} booked: user {user_id} with provider {provider_id} at {result['date']}")
        self._notify_provider(provider_id, customer_name, hour_start)
        return result

    def cancel(self, appointment_id: int, user_id: int) -> dict[str, Any]:
        """
        Cancel an appointment of the requesting user and email the provider.
        """
        now = self.clock()

        with db_session(self.session_factory) as s:
            appointment = s.execute(
                select(Appointment)
                .options(joinedload(Appointment.provider), joinedload(Appointment.user))
                .where(Appointment.id == appointment_id)
            ).scalar_one_or_none()

            if appointment is None:
                raise NotFoundError("Appointment not found")
            if appointment.user_id != user_id:
                raise ForbiddenError()
            if appointment.canceled_at is not None:
                raise AlreadyCanceledError()
            if not self.can_cancel(appointment.date, now):
                logger.info(f"Cancel rejected: appointment {appointment_id} is inside the cancellation window")
                raise CancellationWindowError()

            appointment.canceled_at = now
            s.flush()

            to = f"{appointment.provider.name} <{appointment.provider.email}>"
            customer_name = appointment.user.name
            date = appointment.date
            result = self._appointment_out(appointment)

        logger.info(f"Appointment {appointment_id} canceled by user {user_id}")
        self._mail_cancellation(to, customer_name, date)
        return result

    # =========================
    # Side effects (after commit)
    # =========================
    def _notify_provider(self, provider_id: int, customer_name: str, date: datetime) -> None:
        content = f"New booking from {customer_name} for {format_long(date, self.settings.locale)}"
        try:
            with db_session(self.session_factory) as s:
                s.add(Notification(content=content, user_id=provider_id, created_at=self.clock()))
        except SQLAlchemyError:
            logger.exception(f"Could not store the booking notification for provider {provider_id}")

    def _mail_cancellation(self, to: str, customer_name: str, date: datetime) -> None:
        body = (
            f"Hello,\n\n"
            f"{customer_name} canceled the appointment of {format_long(date, self.settings.locale)}.\n"
            f"The slot is available again.\n"
        )
        try:
            self.mailer.send(to=to, subject="Appointment canceled", body=body)
        except MailError:
            logger.exception(f"Could not send the cancellation email to {to}")

    # =========================
    # Notifications
    # =========================
    def list_notifications(self, user_id: int, unread_only: bool = False, limit: int = 20) -> list[dict[str, Any]]:
        with db_session(self.session_factory) as s:
            q = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                q = q.where(Notification.read.is_(False))
            q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
            return [
                {"id": n.id, "content": n.content, "read": n.read, "created_at": to_iso(n.created_at)}
                for n in s.scalars(q)
            ]

    def mark_notification_read(self, notification_id: int, user_id: int) -> dict[str, Any]:
        with db_session(self.session_factory) as s:
            n = s.get(Notification, notification_id)
            if n is None or n.user_id != user_id:
                raise NotFoundError("Notification not found")
            n.read = True
            return {"id": n.id, "content": n.content, "read": n.read, "created_at": to_iso(n.created_at)}

    # =========================
    # Providers
    # =========================
    def list_providers(self) -> list[dict[str, Any]]:
        with db_session(self.session_factory) as s:
            q = (
                select(User)
                .options(joinedload(User.avatar))
                .where(User.provider.is_(True))
                .order_by(User.name, User.id)
            )
            return [self._provider_out(u) for u in s.scalars(q)]


def build_service() -> AppointmentService:
    """Wire the service from the environment configuration."""
    return AppointmentService(
        session_factory=SessionLocal,
        mailer=get_mail_sender(),
        settings=ServiceSettings.from_env(),
    )
