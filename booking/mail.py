"""
Outgoing mail.

MailSender is the interface the service talks to; get_mail_sender() picks
SMTP when SMTP_HOST is configured and falls back to writing the message to
the log otherwise.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.utils import parseaddr

from . import config

logger = logging.getLogger(__name__)


class MailError(Exception):
    """Delivery failure raised by a MailSender."""
    pass


class MailSender(ABC):

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> None:
        """
        Deliver a plain text email.

        Args:
            to: recipient, either "addr@host" or "Name <addr@host>"
            subject: subject line
            body: plain text body

        Raises:
            MailError: if delivery fails
        """
        pass


class SMTPMailSender(MailSender):

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_address: str = config.MAIL_FROM,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        return msg

    def send(self, to: str, subject: str, body: str) -> None:
        msg = self._build_message(to, subject, body)
        try:
            if self.port == 465:
                context = ssl.create_default_context()
                server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())

            with server:
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(parseaddr(self.from_address)[1], [parseaddr(to)[1]], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"SMTP send to {to} failed: {e}") from e

        logger.info(f"Email '{subject}' sent to {to} via {self.host}")


class LogMailSender(MailSender):
    """Writes messages to the log instead of sending them (development)."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info(f"[mail] to={to} subject={subject!r}\n{body}")


def get_mail_sender() -> MailSender:
    if config.SMTP_HOST:
        return SMTPMailSender(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
            from_address=config.MAIL_FROM,
        )
    logger.warning("SMTP_HOST not set, emails will only be logged")
    return LogMailSender()
