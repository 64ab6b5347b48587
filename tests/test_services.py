"""
Tests for the booking rules of AppointmentService.

Covers:
- hour truncation and the booking guards (provider, past, slot taken)
- paging of the appointment list
- cancellation: ownership, window (corrected and legacy), double cancel
- best-effort side effects (notification, email)
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError

from booking.config import ServiceSettings
from booking.db import Base, db_session, make_engine
from booking.errors import (
    AlreadyCanceledError,
    CancellationWindowError,
    ForbiddenError,
    NotAProviderError,
    NotFoundError,
    PastDateError,
    SlotUnavailableError,
    ValidationError,
)
from booking.models import Appointment, Notification
from booking.services import AppointmentService

from .conftest import APP_URL, NOW, FakeMailer, FixedClock


def _count_appointments(factory) -> int:
    with db_session(factory) as s:
        return s.scalar(select(func.count()).select_from(Appointment))


def _add_appointment(factory, user_id, provider_id, date, canceled_at=None) -> int:
    with db_session(factory) as s:
        a = Appointment(user_id=user_id, provider_id=provider_id, date=date, canceled_at=canceled_at)
        s.add(a)
        s.flush()
        return a.id


def _canceled_at(factory, appointment_id):
    with db_session(factory) as s:
        return s.get(Appointment, appointment_id).canceled_at


class TestStore:

    def test_truncates_date_to_start_of_hour(self, service, users):
        a = service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 34, 12))

        assert a["date"] == "2025-06-01T19:00:00+00:00"
        assert a["user_id"] == users["customer"]
        assert a["provider_id"] == users["provider"]
        assert a["canceled_at"] is None

    def test_aware_dates_are_stored_in_utc(self, service, users, factory):
        date = datetime(2025, 6, 1, 21, 34, tzinfo=timezone(timedelta(hours=2)))
        a = service.store(users["customer"], users["provider"], date)

        assert a["date"] == "2025-06-01T19:00:00+00:00"
        with db_session(factory) as s:
            assert s.get(Appointment, a["id"]).date == datetime(2025, 6, 1, 19, 0)

    def test_notifies_the_provider(self, service, users):
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 34))

        notes = service.list_notifications(users["provider"])
        assert len(notes) == 1
        assert notes[0]["content"] == "New booking from Carla Customer for day 01 of June, at 19:00h"
        assert notes[0]["read"] is False
        assert service.list_notifications(users["customer"]) == []

    def test_notification_uses_configured_locale(self, factory, mailer, clock, users):
        service = AppointmentService(factory, mailer, clock=clock, settings=ServiceSettings(locale="pt"))
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 34))

        assert service.list_notifications(users["provider"])[0]["content"] == (
            "New booking from Carla Customer for dia 01 de junho, às 19:00h"
        )

    def test_rejects_non_provider(self, service, users, factory):
        with pytest.raises(NotAProviderError):
            service.store(users["customer"], users["plain"], datetime(2025, 6, 1, 19, 0))
        assert _count_appointments(factory) == 0

    def test_rejects_unknown_provider(self, service, users):
        with pytest.raises(NotAProviderError):
            service.store(users["customer"], 9999, datetime(2025, 6, 1, 19, 0))

    def test_rejects_unknown_booking_user(self, service, users, factory):
        with pytest.raises(NotFoundError):
            service.store(9999, users["provider"], datetime(2025, 6, 1, 19, 0))
        assert _count_appointments(factory) == 0
        assert service.list_notifications(users["provider"]) == []

    def test_non_provider_is_checked_before_the_date(self, service, users):
        with pytest.raises(NotAProviderError):
            service.store(users["customer"], users["plain"], NOW - timedelta(days=10))

    def test_rejects_past_dates(self, service, users, factory):
        with pytest.raises(PastDateError):
            service.store(users["customer"], users["provider"], NOW - timedelta(hours=1))
        assert _count_appointments(factory) == 0

    def test_current_hour_is_past_once_it_started(self, service, users, clock):
        clock.now = NOW + timedelta(minutes=15)
        with pytest.raises(PastDateError):
            service.store(users["customer"], users["provider"], NOW + timedelta(minutes=30))

    def test_current_hour_is_bookable_at_its_start(self, service, users):
        a = service.store(users["customer"], users["provider"], NOW + timedelta(minutes=30))
        assert a["date"] == "2025-05-20T10:00:00+00:00"

    def test_rejects_taken_slot(self, service, users, factory):
        service.store(users["other_customer"], users["provider"], datetime(2025, 6, 1, 19, 5))

        with pytest.raises(SlotUnavailableError):
            service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 55))
        assert _count_appointments(factory) == 1

    def test_next_hour_is_free(self, service, users):
        service.store(users["other_customer"], users["provider"], datetime(2025, 6, 1, 19, 0))
        a = service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 20, 0))
        assert a["date"] == "2025-06-01T20:00:00+00:00"

    def test_same_slot_with_another_provider_is_free(self, service, users):
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 0))
        a = service.store(users["customer"], users["other_provider"], datetime(2025, 6, 1, 19, 0))
        assert a["provider_id"] == users["other_provider"]

    def test_canceled_slot_can_be_booked_again(self, service, users):
        first = service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 0))
        service.cancel(first["id"], users["customer"])

        again = service.store(users["other_customer"], users["provider"], datetime(2025, 6, 1, 19, 0))
        assert again["id"] != first["id"]

    def test_notification_failure_keeps_the_appointment(self, service, users, engine, factory, caplog):
        Notification.__table__.drop(engine)

        with caplog.at_level(logging.ERROR, logger="booking.services"):
            a = service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 0))

        assert _count_appointments(factory) == 1
        assert a["id"] is not None
        assert "booking notification" in caplog.text


class TestSlotIndex:

    def test_second_active_appointment_in_slot_is_rejected(self, factory, users):
        date = datetime(2025, 6, 1, 19, 0)
        _add_appointment(factory, users["customer"], users["provider"], date)

        with pytest.raises(IntegrityError):
            _add_appointment(factory, users["other_customer"], users["provider"], date)

    def test_canceled_rows_do_not_hold_the_slot(self, factory, users):
        date = datetime(2025, 6, 1, 19, 0)
        _add_appointment(factory, users["customer"], users["provider"], date, canceled_at=NOW)
        _add_appointment(factory, users["customer"], users["provider"], date, canceled_at=NOW)
        _add_appointment(factory, users["other_customer"], users["provider"], date)

        assert _count_appointments(factory) == 3


class TestConcurrentBooking:
    """A rival booking commits between the availability check and the insert."""

    @pytest.fixture
    def engine(self, tmp_path):
        # file database: the rival writes through its own connection
        eng = make_engine(f"sqlite:///{tmp_path / 'booking.sqlite'}", echo=False)
        Base.metadata.create_all(eng)
        yield eng
        eng.dispose()

    def test_slot_taken_before_flush_is_unavailable(self, factory, mailer, clock, users):
        date = datetime(2025, 6, 1, 19, 0)

        def rival_books(*_):
            _add_appointment(factory, users["other_customer"], users["provider"], date)

        def racing_factory():
            s = factory()
            event.listen(s, "before_flush", rival_books, once=True)
            return s

        service = AppointmentService(racing_factory, mailer, clock=clock)

        with pytest.raises(SlotUnavailableError):
            service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 19, 20))

        with db_session(factory) as s:
            active = s.scalars(
                select(Appointment).where(Appointment.date == date, Appointment.canceled_at.is_(None))
            ).all()
            assert [a.user_id for a in active] == [users["other_customer"]]
            assert s.scalar(select(func.count()).select_from(Notification)) == 0


class TestList:

    def test_pages_of_twenty_ordered_by_date(self, service, users, factory):
        base = datetime(2025, 6, 1, 8, 0)
        # inserted in reverse order
        for i in reversed(range(25)):
            _add_appointment(factory, users["customer"], users["provider"], base + timedelta(hours=i))

        page1 = service.list(users["customer"])
        page2 = service.list(users["customer"], page=2)
        page3 = service.list(users["customer"], page=3)

        assert len(page1) == 20
        assert len(page2) == 5
        assert page3 == []
        dates = [a["date"] for a in page1 + page2]
        assert dates == sorted(dates)
        assert dates[0] == "2025-06-01T08:00:00+00:00"

    def test_excludes_canceled_and_other_users(self, service, users, factory):
        keep = _add_appointment(factory, users["customer"], users["provider"], datetime(2025, 6, 1, 9, 0))
        _add_appointment(factory, users["customer"], users["provider"], datetime(2025, 6, 1, 10, 0), canceled_at=NOW)
        _add_appointment(factory, users["other_customer"], users["provider"], datetime(2025, 6, 1, 11, 0))

        items = service.list(users["customer"])
        assert [a["id"] for a in items] == [keep]

    def test_embeds_provider_and_avatar(self, service, users, factory):
        _add_appointment(factory, users["customer"], users["provider"], datetime(2025, 6, 1, 9, 0))
        _add_appointment(factory, users["customer"], users["other_provider"], datetime(2025, 6, 1, 10, 0))

        first, second = service.list(users["customer"])

        assert first["provider"] == {
            "id": users["provider"],
            "name": "Ana Provider",
            "avatar": {"id": users["avatar"], "path": "ana.jpg", "url": f"{APP_URL}/files/ana.jpg"},
        }
        assert second["provider"]["avatar"] is None

    def test_past_and_cancelable_flags(self, service, users, factory):
        _add_appointment(factory, users["customer"], users["provider"], NOW - timedelta(hours=1))
        _add_appointment(factory, users["customer"], users["provider"], NOW + timedelta(hours=1))
        _add_appointment(factory, users["customer"], users["provider"], NOW + timedelta(hours=3))

        past, soon, later = service.list(users["customer"])

        assert (past["past"], past["cancelable"]) == (True, False)
        assert (soon["past"], soon["cancelable"]) == (False, False)
        assert (later["past"], later["cancelable"]) == (False, True)

    def test_rejects_page_zero(self, service, users):
        with pytest.raises(ValidationError):
            service.list(users["customer"], page=0)

    def test_rejects_page_beyond_the_offset_range(self, service, users):
        with pytest.raises(ValidationError):
            service.list(users["customer"], page=10**20)


class TestCancel:

    def _book(self, service, users, hours_ahead=3):
        return service.store(users["customer"], users["provider"], NOW + timedelta(hours=hours_ahead))

    def test_sets_canceled_at_and_emails_provider(self, service, users, mailer, factory):
        a = self._book(service, users)

        result = service.cancel(a["id"], users["customer"])

        assert result["canceled_at"] == "2025-05-20T10:00:00+00:00"
        assert _canceled_at(factory, a["id"]) == NOW
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == "Ana Provider <ana@example.com>"
        assert mailer.sent[0]["subject"] == "Appointment canceled"
        assert "Carla Customer" in mailer.sent[0]["body"]

    def test_canceled_appointment_leaves_the_list(self, service, users):
        a = self._book(service, users)
        service.cancel(a["id"], users["customer"])
        assert service.list(users["customer"]) == []

    def test_unknown_appointment(self, service, users):
        with pytest.raises(NotFoundError):
            service.cancel(9999, users["customer"])

    def test_only_the_owner_can_cancel(self, service, users, mailer, factory):
        a = self._book(service, users)

        with pytest.raises(ForbiddenError):
            service.cancel(a["id"], users["other_customer"])

        assert _canceled_at(factory, a["id"]) is None
        assert mailer.sent == []

    def test_second_cancel_is_rejected(self, service, users, mailer):
        a = self._book(service, users)
        service.cancel(a["id"], users["customer"])

        with pytest.raises(AlreadyCanceledError):
            service.cancel(a["id"], users["customer"])
        assert len(mailer.sent) == 1

    def test_inside_two_hour_window_is_rejected(self, service, users, factory):
        a = self._book(service, users, hours_ahead=1)

        with pytest.raises(CancellationWindowError):
            service.cancel(a["id"], users["customer"])
        assert _canceled_at(factory, a["id"]) is None

    def test_exactly_two_hours_before_is_allowed(self, service, users):
        a = self._book(service, users, hours_ahead=2)
        assert service.cancel(a["id"], users["customer"])["canceled_at"] is not None

    def test_past_appointment_cannot_be_canceled(self, service, users, factory):
        aid = _add_appointment(factory, users["customer"], users["provider"], NOW - timedelta(hours=3))
        with pytest.raises(CancellationWindowError):
            service.cancel(aid, users["customer"])

    def test_mail_failure_keeps_the_cancellation(self, factory, clock, users, caplog):
        service = AppointmentService(factory, FakeMailer(fail=True), clock=clock)
        a = service.store(users["customer"], users["provider"], NOW + timedelta(hours=5))

        with caplog.at_level(logging.ERROR, logger="booking.services"):
            result = service.cancel(a["id"], users["customer"])

        assert result["canceled_at"] is not None
        assert _canceled_at(factory, a["id"]) == NOW
        assert "cancellation email" in caplog.text


class TestLegacyCancellationWindow:
    """date + 2h compared with now, as the first version of the API did."""

    @pytest.fixture
    def legacy(self, factory, mailer, clock):
        return AppointmentService(
            factory, mailer, clock=clock, settings=ServiceSettings(legacy_cancellation_window=True)
        )

    def test_allows_cancel_right_before_the_appointment(self, legacy, users):
        a = legacy.store(users["customer"], users["provider"], NOW + timedelta(hours=1))
        assert legacy.cancel(a["id"], users["customer"])["canceled_at"] is not None

    def test_allows_cancel_shortly_after_the_start(self, legacy, users, factory):
        aid = _add_appointment(factory, users["customer"], users["provider"], NOW - timedelta(hours=1))
        assert legacy.cancel(aid, users["customer"])["canceled_at"] is not None

    def test_rejects_once_two_hours_past(self, legacy, users, factory):
        aid = _add_appointment(factory, users["customer"], users["provider"], NOW - timedelta(hours=3))
        with pytest.raises(CancellationWindowError):
            legacy.cancel(aid, users["customer"])


class TestNotifications:

    def test_newest_first_and_unread_filter(self, service, users, clock):
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 9, 0))
        clock.now = NOW + timedelta(minutes=1)
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 10, 0))

        notes = service.list_notifications(users["provider"])
        assert len(notes) == 2
        assert notes[0]["id"] > notes[1]["id"]

        service.mark_notification_read(notes[1]["id"], users["provider"])
        unread = service.list_notifications(users["provider"], unread_only=True)
        assert [n["id"] for n in unread] == [notes[0]["id"]]

    def test_limit(self, service, users):
        for h in range(9, 14):
            service.store(users["customer"], users["provider"], datetime(2025, 6, 1, h, 0))
        assert len(service.list_notifications(users["provider"], limit=3)) == 3

    def test_cannot_mark_someone_elses_notification(self, service, users):
        service.store(users["customer"], users["provider"], datetime(2025, 6, 1, 9, 0))
        note = service.list_notifications(users["provider"])[0]

        with pytest.raises(NotFoundError):
            service.mark_notification_read(note["id"], users["customer"])
        with pytest.raises(NotFoundError):
            service.mark_notification_read(9999, users["provider"])


def test_list_providers(service, users):
    providers = service.list_providers()

    assert [p["name"] for p in providers] == ["Ana Provider", "Bruno Provider"]
    assert providers[0]["avatar"]["url"] == f"{APP_URL}/files/ana.jpg"
    assert providers[1]["avatar"] is None


def test_default_clock_is_used_when_not_given(factory, users):
    service = AppointmentService(factory, FakeMailer())
    with pytest.raises(PastDateError):
        service.store(users["customer"], users["provider"], datetime(2000, 1, 1, 9, 0))
