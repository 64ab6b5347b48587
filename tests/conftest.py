from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy.pool import StaticPool

from booking.config import ServiceSettings
from booking.db import Base, db_session, make_engine, make_session_factory
from booking.mail import MailError, MailSender
from booking.models import File, User
from booking.services import AppointmentService

NOW = datetime(2025, 5, 20, 10, 0)
APP_URL = "http://testserver"


class FakeMailer(MailSender):
    """Records messages instead of sending them."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise MailError("smtp down")
        self.sent.append({"to": to, "subject": subject, "body": body})


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def engine():
    # one shared in-memory database for every session of the test
    eng = make_engine("sqlite://", echo=False, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def settings():
    return ServiceSettings(app_url=APP_URL)


@pytest.fixture
def service(factory, mailer, clock, settings):
    return AppointmentService(factory, mailer, clock=clock, settings=settings)


@pytest.fixture
def users(factory):
    """provider (with avatar), second provider, two customers and a plain user."""
    with db_session(factory) as s:
        avatar = File(name="ana.jpg", path="ana.jpg")
        s.add(avatar)
        s.flush()

        provider = User(name="Ana Provider", email="ana@example.com", password_hash="x", provider=True, avatar_id=avatar.id)
        other_provider = User(name="Bruno Provider", email="bruno@example.com", password_hash="x", provider=True)
        customer = User(name="Carla Customer", email="carla@example.com", password_hash="x")
        other_customer = User(name="Dario Customer", email="dario@example.com", password_hash="x")
        plain = User(name="Elena Plain", email="elena@example.com", password_hash="x", provider=False)
        s.add_all([provider, other_provider, customer, other_customer, plain])
        s.flush()

        return {
            "provider": provider.id,
            "other_provider": other_provider.id,
            "customer": customer.id,
            "other_customer": other_customer.id,
            "plain": plain.id,
            "avatar": avatar.id,
        }
