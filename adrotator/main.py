import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from adrotator.config import settings
from adrotator.container import (
    delivery_service,
    payment_worker_service,
    queue_store,
    registration_service,
    scheduler_service,
)
from adrotator.db import create_tables
from adrotator.errors import RegistrationError
from adrotator.schemas import (
    CampaignResponse,
    CampaignSubmitDTO,
    HealthResponse,
    QueueDepthResponse,
    RecipientResponse,
    RecipientSetupDTO,
)


logging.basicConfig(level=logging.INFO, format="[adrotator] %(asctime)s %(levelname)s %(message)s", force=True)
logging.getLogger("aiogram").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def runs_loops() -> bool:
    return settings.bot_role.strip().lower() == "app"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()

    if runs_loops():
        await scheduler_service.start()
        await payment_worker_service.start()

    try:
        yield
    finally:
        if runs_loops():
            await scheduler_service.stop()
            await payment_worker_service.stop()
        await delivery_service.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(ok=True, role=settings.bot_role)


@app.get("/queues", response_model=QueueDepthResponse)
async def queues() -> QueueDepthResponse:
    return QueueDepthResponse(**await queue_store.queue_depths())


@app.post("/recipients", response_model=RecipientResponse)
async def setup_recipient(payload: RecipientSetupDTO) -> RecipientResponse:
    recipient = await registration_service.setup_recipient(
        recipient_id=payload.recipient_id,
        payout_id=payload.payout_id,
        channel_id=payload.channel_id,
        panel_channel_id=payload.panel_channel_id,
        cooldown_seconds=payload.cooldown_seconds,
    )
    return RecipientResponse(
        id=recipient.id,
        payout_id=recipient.payout_id,
        channel_id=recipient.channel_id,
        cooldown_seconds=recipient.cooldown_seconds,
    )


@app.post("/campaigns", response_model=CampaignResponse)
async def submit_campaign(payload: CampaignSubmitDTO) -> CampaignResponse:
    try:
        campaign = await registration_service.submit_campaign(
            advertiser_id=payload.advertiser_id,
            recipient_id=payload.recipient_id,
            body=payload.body,
            link=payload.link,
            label=payload.label,
            card_code=payload.card_code,
            max_times=payload.max_times,
        )
    except RegistrationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CampaignResponse(
        campaign_id=campaign.campaign_id,
        advertiser_id=campaign.advertiser_id,
        remaining_impressions=campaign.remaining_impressions,
    )
