from datetime import datetime

from adrotator.models import Recipient
from adrotator.utils import clamp_cooldown


def is_configured(recipient: Recipient) -> bool:
    return bool(recipient.payout_id) and bool(recipient.channel_id)


def cooldown_elapsed(last_delivery_at: datetime | None, cooldown_seconds: int | None, now: datetime) -> bool:
    if last_delivery_at is None:
        return True
    return (now - last_delivery_at).total_seconds() >= clamp_cooldown(cooldown_seconds)


def is_recipient_eligible(recipient: Recipient, now: datetime) -> bool:
    """A recipient may take a new ad once it is fully configured and its cooldown has run out."""
    if not is_configured(recipient):
        return False
    return cooldown_elapsed(recipient.last_delivery_at, recipient.cooldown_seconds, now)
