"""High-level notification service for loyalty emails."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from hotel_loyalty.core.settings import get_settings
from hotel_loyalty.services.guests import GuestDisplayInfo
from hotel_loyalty.services.loyalty.events import RewardRedeemed, TierChanged

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend, build_message
from .templates import RenderedTemplate, render_reward_redeemed, render_tier_changed


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body_text: str
    body_html: str | None
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Coordinates notification delivery via pluggable backends."""

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return self._events

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        """Replace backend with in-memory implementation (useful for tests)."""
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def send_tier_changed(self, event: TierChanged) -> None:
        metadata = {
            "member_id": str(event.member_id),
            "old_tier": event.old_tier,
            "new_tier": event.new_tier,
            "reason": event.reason,
        }
        await self._deliver(event.guest, render_tier_changed(event), event_type=event.event_type, metadata=metadata)

    async def send_reward_redeemed(self, event: RewardRedeemed) -> None:
        metadata = {
            "member_id": str(event.member_id),
            "redemption_id": str(event.redemption_id),
            "reward_name": event.reward_name,
            "points_cost": event.points_cost,
        }
        await self._deliver(
            event.guest, render_reward_redeemed(event), event_type=event.event_type, metadata=metadata
        )

    def _build_default_backend(self) -> Optional[EmailBackend]:
        return SMTPEmailBackend.from_settings(get_settings())

    async def _deliver(
        self,
        guest: GuestDisplayInfo,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        """Send using active backend and record emitted event."""
        if self._backend is None:
            return
        if not guest.email:
            logger.info("Skipping loyalty notification without guest email", event_type=event_type, **metadata)
            return

        message = build_message(guest.email, template.subject, template.text_body, template.html_body)
        await self._backend.deliver(message)
        self._events.append(
            NotificationEvent(
                recipient=guest.email,
                subject=template.subject,
                body_text=template.text_body,
                body_html=template.html_body,
                event_type=event_type,
                metadata=metadata,
            )
        )
