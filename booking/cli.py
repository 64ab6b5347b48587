from __future__ import annotations

import argparse
import logging
from datetime import datetime

from .auth_service import create_user, list_users
from .db import init_db
from .errors import BookingError
from .seed import seed_base
from .services import AppointmentService, build_service


def cmd_init(args: argparse.Namespace, service: AppointmentService) -> None:
    seed_base(service.session_factory)
    print("Database initialized and demo data loaded.")


def cmd_list(args: argparse.Namespace, service: AppointmentService) -> None:
    if args.entity == "providers":
        for p in service.list_providers():
            avatar = p["avatar"]["url"] if p["avatar"] else "-"
            print(f"{p['id']} | {p['name']} | {avatar}")
    elif args.entity == "users":
        for u in list_users(service.session_factory):
            print(f"{u.id} | {u.name} | {u.email} | {'provider' if u.provider else 'customer'}")


def cmd_add_user(args: argparse.Namespace, service: AppointmentService) -> None:
    uid = create_user(args.name, args.email, args.password, provider=args.provider, factory=service.session_factory)
    print(f"User created: {uid}")


def cmd_appointments(args: argparse.Namespace, service: AppointmentService) -> None:
    items = service.list(args.user_id, page=args.page)
    if not items:
        print("No appointments.")
        return
    for a in items:
        flag = "cancelable" if a["cancelable"] else "locked"
        print(f"{a['id']} | {a['date']} | {a['provider']['name']} | {flag}")


def cmd_book(args: argparse.Namespace, service: AppointmentService) -> None:
    date = datetime.fromisoformat(args.date)  # e.g. 2026-01-14T10:30
    a = service.store(args.user_id, args.provider_id, date)
    print(f"Appointment booked: {a['id']} at {a['date']}")


def cmd_cancel(args: argparse.Namespace, service: AppointmentService) -> None:
    a = service.cancel(args.appointment_id, args.user_id)
    print(f"Appointment {a['id']} canceled at {a['canceled_at']}")


def cmd_notifications(args: argparse.Namespace, service: AppointmentService) -> None:
    """
    Prints the notifications of a user, newest first.
    With --mark-read they are marked as read once printed.
    """
    items = service.list_notifications(args.user_id, unread_only=args.unread, limit=args.limit)
    if not items:
        print("No notifications.")
        return

    for n in items:
        print(f"[{n['id']}] {n['created_at']} | {'read' if n['read'] else 'new '} | {n['content']}")
        if args.mark_read and not n["read"]:
            service.mark_notification_read(n["id"], args.user_id)

    if args.mark_read:
        print("Notifications marked as read.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="booking", description="Booking CLI")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the database and load demo data")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List providers or users")
    p_list.add_argument("entity", choices=["providers", "users"])
    p_list.set_defaults(func=cmd_list)

    p_addu = sub.add_parser("add-user", help="Create a user")
    p_addu.add_argument("--name", required=True)
    p_addu.add_argument("--email", required=True)
    p_addu.add_argument("--password", required=True)
    p_addu.add_argument("--provider", action="store_true", help="The user offers bookable services")
    p_addu.set_defaults(func=cmd_add_user)

    p_apps = sub.add_parser("appointments", help="Active appointments of a user")
    p_apps.add_argument("--user-id", type=int, required=True)
    p_apps.add_argument("--page", type=int, default=1)
    p_apps.set_defaults(func=cmd_appointments)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--user-id", type=int, required=True)
    p_book.add_argument("--provider-id", type=int, required=True)
    p_book.add_argument("--date", required=True, help="ISO datetime, e.g. 2026-01-14T10:30")
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel an appointment")
    p_cancel.add_argument("--user-id", type=int, required=True)
    p_cancel.add_argument("--appointment-id", type=int, required=True)
    p_cancel.set_defaults(func=cmd_cancel)

    p_not = sub.add_parser("notifications", help="Show the notifications of a user")
    p_not.add_argument("--user-id", type=int, required=True)
    p_not.add_argument("--limit", type=int, default=20)
    p_not.add_argument("--unread", action="store_true", help="Only unread ones")
    p_not.add_argument("--mark-read", action="store_true", help="Mark them as read once printed")
    p_not.set_defaults(func=cmd_notifications)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    init_db()  # makes sure the tables exist
    service = build_service()
    try:
        args.func(args, service)
    except (BookingError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
