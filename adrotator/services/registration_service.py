import logging
import re
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from adrotator.config import settings
from adrotator.errors import DeliveryFailure, RegistrationError, WriteFailure
from adrotator.models import Campaign, CampaignContent, Recipient
from adrotator.services.delivery_service import TelegramDeliveryService
from adrotator.services.eligibility import is_configured
from adrotator.services.queue_store import QueueStore
from adrotator.utils import clamp_cooldown, epoch_ms, utcnow


LINK_RE = re.compile(r"^https?://", re.IGNORECASE)


def parse_max_times(raw: str | int | None) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise RegistrationError("max_times must be a whole number greater than zero")
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        if not text.isdigit():
            raise RegistrationError("max_times must be a whole number greater than zero")
        value = int(text)
    if value <= 0:
        raise RegistrationError("max_times must be a whole number greater than zero")
    return value


class RegistrationService:
    """Writes the rows the rotation core reads: recipients, campaigns and their content."""

    def __init__(self, store: QueueStore, delivery_service: TelegramDeliveryService | None = None):
        self.store = store
        self.delivery_service = delivery_service
        self.logger = logging.getLogger("registration")

    async def setup_recipient(
        self,
        recipient_id: str,
        payout_id: str | None = None,
        channel_id: str | None = None,
        panel_channel_id: str | None = None,
        cooldown_seconds: int | None = None,
    ) -> Recipient:
        if cooldown_seconds is not None:
            cooldown_seconds = clamp_cooldown(cooldown_seconds)

        try:
            async with self.store.session() as db:
                recipient = (
                    await db.execute(select(Recipient).where(Recipient.id == recipient_id))
                ).scalars().first()
                if not recipient:
                    recipient = Recipient(
                        id=recipient_id,
                        payout_id=payout_id,
                        channel_id=channel_id,
                        panel_channel_id=panel_channel_id,
                        cooldown_seconds=cooldown_seconds,
                    )
                    db.add(recipient)
                else:
                    if payout_id is not None:
                        recipient.payout_id = payout_id
                    if channel_id is not None:
                        recipient.channel_id = channel_id
                    if panel_channel_id is not None:
                        recipient.panel_channel_id = panel_channel_id
                    if cooldown_seconds is not None:
                        recipient.cooldown_seconds = cooldown_seconds
                await db.flush()
        except SQLAlchemyError as e:
            raise WriteFailure(str(e)) from e

        self.logger.info("recipient configured id=%s cooldown=%s", recipient_id, recipient.cooldown_seconds)
        if panel_channel_id and self.delivery_service is not None:
            await self._post_panel(recipient)
        return recipient

    async def _post_panel(self, recipient: Recipient) -> None:
        # setup succeeds even when the panel cannot be posted
        try:
            await self.delivery_service.post_panel(recipient)
        except DeliveryFailure as e:
            self.logger.warning("panel post failed recipient=%s error=%s", recipient.id, e)

    async def submit_campaign(
        self,
        advertiser_id: str,
        recipient_id: str,
        body: str,
        link: str,
        card_code: str,
        label: str | None = None,
        max_times: str | int | None = None,
        now: datetime | None = None,
    ) -> Campaign:
        if not LINK_RE.match(link or ""):
            raise RegistrationError("link must start with http:// or https://")
        if not (body or "").strip():
            raise RegistrationError("ad content must not be empty")
        if not (card_code or "").strip():
            raise RegistrationError("card code is required")
        label = (label or "").strip() or None
        if label is not None and len(label) > settings.label_max_length:
            raise RegistrationError(f"label must be at most {settings.label_max_length} characters")
        remaining = parse_max_times(max_times)

        recipient = await self.store.get_recipient(recipient_id)
        if recipient is None or not is_configured(recipient):
            raise RegistrationError(f"recipient {recipient_id} is not configured")

        now = now or utcnow()
        campaign_id = f"{advertiser_id}:{epoch_ms(now)}"
        campaign = Campaign(
            advertiser_id=advertiser_id,
            campaign_id=campaign_id,
            remaining_impressions=remaining,
            card_code=card_code.strip(),
        )
        try:
            async with self.store.session() as db:
                # resubmission with the same id replaces the earlier one
                await db.merge(campaign)
                await db.merge(
                    CampaignContent(
                        campaign_id=campaign_id,
                        advertiser_id=advertiser_id,
                        body=body,
                        link=link,
                        label=label,
                    )
                )
        except SQLAlchemyError as e:
            raise WriteFailure(str(e)) from e

        self.logger.info("campaign registered id=%s remaining=%s", campaign_id, remaining)
        return campaign
