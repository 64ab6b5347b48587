from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .auth_security import hash_password, verify_password
from .db import SessionLocal, db_session
from .models import User


def create_user(
    name: str,
    email: str,
    password: str,
    provider: bool = False,
    factory: sessionmaker = SessionLocal,
) -> int:
    name = name.strip()
    email = email.strip().lower()
    if not name or not email or not password:
        raise ValueError("Name, email and password are required.")

    with db_session(factory) as s:
        exists = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists:
            raise ValueError("Email already registered.")

        u = User(name=name, email=email, password_hash=hash_password(password), provider=provider)
        s.add(u)
        s.flush()
        return u.id


def authenticate(email: str, password: str, factory: sessionmaker = SessionLocal) -> User | None:
    email = email.strip().lower()
    with db_session(factory) as s:
        u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u:
            return None
        if not verify_password(password, u.password_hash):
            return None
        return u


def get_user_by_id(user_id: int, factory: sessionmaker = SessionLocal) -> User | None:
    with db_session(factory) as s:
        return s.get(User, user_id)


def list_users(factory: sessionmaker = SessionLocal) -> list[User]:
    with db_session(factory) as s:
        return list(s.scalars(select(User).order_by(User.name, User.id)))
