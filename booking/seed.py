from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .auth_security import hash_password
from .db import SessionLocal, db_session
from .models import File, User

DEMO_PASSWORD = "123456"

PROVIDERS = [
    ("Diego Fernandes", "diego@booking.local", "diego.jpg"),
    ("Laura Bianchi", "laura@booking.local", "laura.jpg"),
]

CUSTOMERS = [
    ("Mario Rossi", "mario@booking.local"),
]


def seed_base(factory: sessionmaker = SessionLocal) -> None:
    """
    Minimal demo data (idempotent):
    - providers, each with an avatar file
    - one customer
    """
    with db_session(factory) as s:
        for name, email, avatar_path in PROVIDERS:
            if s.execute(select(User).where(User.email == email)).scalar_one_or_none() is not None:
                continue

            avatar = s.execute(select(File).where(File.path == avatar_path)).scalar_one_or_none()
            if avatar is None:
                avatar = File(name=avatar_path, path=avatar_path)
                s.add(avatar)
                s.flush()

            s.add(
                User(
                    name=name,
                    email=email,
                    password_hash=hash_password(DEMO_PASSWORD),
                    provider=True,
                    avatar_id=avatar.id,
                )
            )

        for name, email in CUSTOMERS:
            if s.execute(select(User).where(User.email == email)).scalar_one_or_none() is None:
                s.add(User(name=name, email=email, password_hash=hash_password(DEMO_PASSWORD)))
