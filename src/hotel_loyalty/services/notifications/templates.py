"""Notification templates for loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from hotel_loyalty.services.loyalty.events import RewardRedeemed, TierChanged


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def _format_money(amount: Decimal) -> str:
    return f"${Decimal(amount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,}"


def _format_date(moment: datetime | None) -> str:
    return moment.strftime("%B %d, %Y") if moment else "no expiry"


def render_tier_changed(event: TierChanged) -> RenderedTemplate:
    """Render notification when a member moves between tiers."""

    name = event.guest.display_name
    greeting = f"Hi {name},"
    if event.is_upgrade:
        subject = f"Welcome to {event.new_tier} status"
        headline = f"Congratulations! You've reached the {event.new_tier} tier."
    else:
        subject = f"Your loyalty tier is now {event.new_tier}"
        headline = f"Your membership tier changed from {event.old_tier} to {event.new_tier}."

    text_lines = [greeting, "", headline, f"Reason: {event.reason}"]
    if event.benefits:
        text_lines.extend(["", "Your benefits:"])
        text_lines.extend(f"- {benefit}" for benefit in event.benefits)
    text_lines.extend(["", "Thank you for staying with us."])
    text_body = "\n".join(text_lines)

    benefits_html = ""
    if event.benefits:
        items = "".join(f"<li>{html.escape(benefit)}</li>" for benefit in event.benefits)
        benefits_html = f"""
    <h3>Your benefits</h3>
    <ul>{items}</ul>
"""

    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    <p>{html.escape(headline)}</p>
    <p>Reason: {html.escape(event.reason)}</p>
    {benefits_html}
    <p>Thank you for staying with us.</p>
  </body>
</html>"""

    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_reward_redeemed(event: RewardRedeemed) -> RenderedTemplate:
    """Render the redemption confirmation."""

    name = event.guest.display_name
    subject = f"Your {event.reward_name} is confirmed"
    text_body = "\n".join(
        [
            f"Hi {name},",
            "",
            f"You redeemed {event.points_cost:,} points for {event.reward_name} ({_format_money(event.value_redeemed)}).",
            f"Valid until: {_format_date(event.valid_until)}",
            f"Remaining balance: {event.remaining_points:,} points",
            "",
            "Present this confirmation at the front desk to use your reward.",
        ]
    )
    html_body = f"""<html>
  <body>
    <p>Hi {html.escape(name)},</p>
    <p>You redeemed <strong>{event.points_cost:,}</strong> points for
    <strong>{html.escape(event.reward_name)}</strong> ({_format_money(event.value_redeemed)}).</p>
    <p>Valid until: {_format_date(event.valid_until)}</p>
    <p>Remaining balance: {event.remaining_points:,} points</p>
    <p>Present this confirmation at the front desk to use your reward.</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)
