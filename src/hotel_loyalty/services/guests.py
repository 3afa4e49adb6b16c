"""Guest identity helpers shared by loyalty responses and notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class GuestDisplayInfo:
    """Display-only guest details captured alongside a membership."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None

    @classmethod
    def from_member(cls, member: Any) -> "GuestDisplayInfo":
        return cls(
            first_name=member.guest_first_name,
            last_name=member.guest_last_name,
            email=member.guest_email,
        )

    @property
    def display_name(self) -> str:
        return format_guest_name(self)


def format_guest_name(info: GuestDisplayInfo | None) -> str:
    """Build a display name from whatever guest details are present.

    Preference order is full name, the single known name, the local part of
    the email address, then ``"Guest"``.
    """

    if info is None:
        return "Guest"

    parts = [part.strip() for part in (info.first_name, info.last_name) if part and part.strip()]
    if parts:
        return " ".join(parts)

    if info.email and info.email.strip():
        local_part = info.email.strip().split("@", 1)[0]
        if local_part:
            return local_part

    return "Guest"


__all__ = ["GuestDisplayInfo", "format_guest_name"]
