from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# .env in the project root (next to streamlit_app.py)
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{ROOT_DIR / 'booking.sqlite'}")
DB_ECHO = _bool("DB_ECHO")

APP_URL = os.getenv("APP_URL", "http://127.0.0.1:8000")
APP_LOCALE = os.getenv("APP_LOCALE", "en")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# In production set it through the environment
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS = _bool("SMTP_USE_TLS", "true")
MAIL_FROM = os.getenv("MAIL_FROM", "Booking <noreply@booking.local>")

PAGE_SIZE = 20
CANCELLATION_WINDOW_HOURS = 2
LEGACY_CANCELLATION_WINDOW = _bool("LEGACY_CANCELLATION_WINDOW")


@dataclass(frozen=True)
class ServiceSettings:
    page_size: int = PAGE_SIZE
    cancellation_window_hours: int = CANCELLATION_WINDOW_HOURS
    legacy_cancellation_window: bool = False
    locale: str = "en"
    app_url: str = "http://127.0.0.1:8000"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            page_size=PAGE_SIZE,
            cancellation_window_hours=CANCELLATION_WINDOW_HOURS,
            legacy_cancellation_window=LEGACY_CANCELLATION_WINDOW,
            locale=APP_LOCALE,
            app_url=APP_URL,
        )
