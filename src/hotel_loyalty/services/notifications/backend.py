"""Delivery backends for loyalty emails."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Protocol

from hotel_loyalty.core.settings import Settings


class EmailBackend(Protocol):
    async def deliver(self, message: EmailMessage) -> None:
        ...


def build_message(recipient: str, subject: str, text_body: str, html_body: str | None = None) -> EmailMessage:
    """Plain-text email with an optional HTML alternative."""

    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = subject
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype="html")
    return message


class SMTPEmailBackend:
    """Relays guest emails through the hotel's SMTP server on a worker thread."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @classmethod
    def from_settings(cls, settings: Settings) -> SMTPEmailBackend | None:
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None
        return cls(settings)

    async def deliver(self, message: EmailMessage) -> None:
        message["From"] = self._settings.smtp_sender_email
        await asyncio.to_thread(self._send, message)

    def _send(self, message: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)


class InMemoryEmailBackend:
    """Keeps outbound messages for inspection in tests and local runs."""

    def __init__(self) -> None:
        self.sent_messages: list[EmailMessage] = []

    async def deliver(self, message: EmailMessage) -> None:
        self.sent_messages.append(message)


__all__ = ["EmailBackend", "InMemoryEmailBackend", "SMTPEmailBackend", "build_message"]
