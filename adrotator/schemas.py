from pydantic import BaseModel, Field


class RecipientSetupDTO(BaseModel):
    recipient_id: str = Field(min_length=1)
    payout_id: str | None = None
    channel_id: str | None = None
    panel_channel_id: str | None = None
    cooldown_seconds: int | None = None


class RecipientResponse(BaseModel):
    id: str
    payout_id: str | None
    channel_id: str | None
    cooldown_seconds: int | None


class CampaignSubmitDTO(BaseModel):
    advertiser_id: str = Field(min_length=1)
    recipient_id: str = Field(min_length=1)
    body: str = Field(min_length=1)
    link: str = Field(min_length=1)
    label: str | None = Field(default=None, max_length=12)
    card_code: str = Field(min_length=1)
    max_times: str | None = None


class CampaignResponse(BaseModel):
    campaign_id: str
    advertiser_id: str
    remaining_impressions: int | None


class QueueDepthResponse(BaseModel):
    deliveryJobs: int
    paymentJobs: int


class HealthResponse(BaseModel):
    ok: bool
    role: str
