from datetime import datetime

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from adrotator.db import create_tables
from adrotator.errors import DeliveryFailure, PaymentFailure
from adrotator.models import Campaign, CampaignContent, Recipient
from adrotator.services.payment_client import PaymentReceipt
from adrotator.services.queue_store import QueueStore


NOW = datetime(2026, 2, 15, 12, 0, 0)


@pytest_asyncio.fixture
async def store():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_tables(engine)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield QueueStore(factory)
    await engine.dispose()


async def add_recipient(store, recipient_id, payout_id="owner-1", channel_id="-1001", cooldown=300, last=None):
    async with store.session() as db:
        db.add(
            Recipient(
                id=recipient_id,
                payout_id=payout_id,
                channel_id=channel_id,
                cooldown_seconds=cooldown,
                last_delivery_at=last,
            )
        )


async def add_campaign(store, advertiser_id, campaign_id, remaining=None, card="card-1", with_content=True):
    async with store.session() as db:
        db.add(
            Campaign(
                advertiser_id=advertiser_id,
                campaign_id=campaign_id,
                remaining_impressions=remaining,
                card_code=card,
            )
        )
        if with_content:
            db.add(
                CampaignContent(
                    campaign_id=campaign_id,
                    advertiser_id=advertiser_id,
                    body=f"Buy {campaign_id}",
                    link="https://example.com",
                    label="Shop",
                )
            )


class FakeTimer:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakePaymentClient:
    def __init__(self, fail=False, error=None, timer=None):
        self.fail = fail
        self.error = error
        self.timer = timer
        self.calls = []

    async def charge_card(self, card_code, to_id, amount):
        self.calls.append(
            {
                "card_code": card_code,
                "to_id": to_id,
                "amount": amount,
                "at": self.timer.now if self.timer else None,
            }
        )
        if self.error is not None:
            raise self.error
        if self.fail:
            raise PaymentFailure("payment declined", response={"success": False})
        return PaymentReceipt(success=True, transaction_id=f"tx-{len(self.calls)}", timestamp="2026-02-15")


class FakeDeliveryService:
    def __init__(self, fail=False):
        self.fail = fail
        self.posts = []
        self.panels = []

    async def post_panel(self, recipient):
        self.panels.append((recipient.id, recipient.panel_channel_id))
        if self.fail:
            raise DeliveryFailure("chat not found")

    async def post_content(self, recipient, delivery):
        self.posts.append((recipient.id, delivery.campaign_id, delivery.body))
        if self.fail:
            raise DeliveryFailure("chat not found")
