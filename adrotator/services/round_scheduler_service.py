import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from adrotator.config import settings
from adrotator.models import Campaign, CampaignContent, DeliveryJob, PaymentJob
from adrotator.services.eligibility import is_recipient_eligible
from adrotator.services.queue_store import QueueStore
from adrotator.utils import shuffled, utcnow


@dataclass
class RoundResult:
    outcome: str
    deliveries: int = 0
    payments: int = 0
    recipient_ids: list[str] = field(default_factory=list)
    campaign_keys: list[tuple[str, str]] = field(default_factory=list)


class RoundSchedulerService:
    def __init__(
        self,
        store: QueueStore,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
        interval_ms: int | None = None,
    ):
        self.store = store
        self.clock = clock
        self.rng = rng or random.Random()
        self.interval_ms = interval_ms or settings.round_interval_ms
        self.logger = logging.getLogger("round_scheduler")
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        if self._task:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None

    async def _loop(self) -> None:
        # first round fires immediately at startup
        while not self._stopping.is_set():
            try:
                await self.run_round()
            except Exception:
                self.logger.exception("distribution round failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=max(1, self.interval_ms) / 1000)
            except asyncio.TimeoutError:
                pass

    async def run_round(self, now: datetime | None = None) -> RoundResult:
        now = now or self.clock()

        recipients = await self.store.list_recipients()
        eligible = [r for r in recipients if is_recipient_eligible(r, now)]
        if not eligible:
            return RoundResult(outcome="no-eligible-recipients")

        campaigns = await self.store.list_campaigns()
        if not campaigns:
            return RoundResult(outcome="no-campaigns")

        shuffled_recipients = shuffled(eligible, self.rng)
        shuffled_campaigns = shuffled(campaigns, self.rng)

        deliveries: list[DeliveryJob] = []
        payments: list[PaymentJob] = []
        used_this_round: dict[tuple[str, str], int] = {}
        contents: dict[str, CampaignContent | None] = {}

        for index, recipient in enumerate(shuffled_recipients):
            campaign = shuffled_campaigns[index % len(shuffled_campaigns)]
            key = (campaign.advertiser_id, campaign.campaign_id)
            if self._budget_left(campaign, used_this_round.get(key, 0)) <= 0:
                continue

            if campaign.campaign_id not in contents:
                contents[campaign.campaign_id] = await self.store.get_campaign_content(campaign.campaign_id)
            content = contents[campaign.campaign_id]
            if content is None:
                continue

            deliveries.append(
                DeliveryJob(
                    campaign_id=campaign.campaign_id,
                    advertiser_id=campaign.advertiser_id,
                    body=content.body,
                    link=content.link,
                    label=content.label,
                    recipient_id=recipient.id,
                )
            )
            payments.append(
                PaymentJob(
                    campaign_id=campaign.campaign_id,
                    advertiser_id=campaign.advertiser_id,
                    card_code=campaign.card_code,
                    payout_id=recipient.payout_id,
                )
            )
            used_this_round[key] = used_this_round.get(key, 0) + 1

        if not deliveries:
            return RoundResult(outcome="empty-batch")

        recipient_ids = list(dict.fromkeys(job.recipient_id for job in deliveries))
        campaign_keys = list(used_this_round)
        await self.store.commit_round(deliveries, payments, recipient_ids, campaign_keys, now)

        result = RoundResult(
            outcome="enqueued",
            deliveries=len(deliveries),
            payments=len(payments),
            recipient_ids=recipient_ids,
            campaign_keys=campaign_keys,
        )
        self.logger.info(
            "distribution round finished %s",
            {
                "outcome": result.outcome,
                "deliveries": result.deliveries,
                "recipients": len(recipient_ids),
                "campaigns": len(campaign_keys),
            },
        )
        return result

    @staticmethod
    def _budget_left(campaign: Campaign, used: int) -> int | float:
        if campaign.remaining_impressions is None:
            return float("inf")
        return campaign.remaining_impressions - used
