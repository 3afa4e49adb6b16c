"""Bridges loyalty domain events onto guest notifications."""

from __future__ import annotations

from hotel_loyalty.services.loyalty.events import LoyaltyEventPublisher, RewardRedeemed, TierChanged

from .service import NotificationService


class LoyaltyNotificationSubscriber:
    """Emails guests when their tier moves or a redemption completes."""

    def __init__(self, notifications: NotificationService) -> None:
        self._notifications = notifications

    def register(self, publisher: LoyaltyEventPublisher) -> None:
        publisher.subscribe(TierChanged, self.on_tier_changed)
        publisher.subscribe(RewardRedeemed, self.on_reward_redeemed)

    async def on_tier_changed(self, event: TierChanged) -> None:
        if event.old_tier is None:
            return
        await self._notifications.send_tier_changed(event)

    async def on_reward_redeemed(self, event: RewardRedeemed) -> None:
        await self._notifications.send_reward_redeemed(event)
