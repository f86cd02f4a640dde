from datetime import timedelta

import pytest
from pydantic import ValidationError

from adrotator.errors import RegistrationError
from adrotator.schemas import CampaignSubmitDTO
from adrotator.services.registration_service import RegistrationService, parse_max_times
from conftest import NOW, FakeDeliveryService, add_recipient


def test_parse_max_times():
    assert parse_max_times(None) is None
    assert parse_max_times("  ") is None
    assert parse_max_times(" 12 ") == 12
    assert parse_max_times(3) == 3
    for bad in ("0", "-1", "1.5", "ten", 0):
        with pytest.raises(RegistrationError):
            parse_max_times(bad)


@pytest.mark.asyncio
async def test_setup_recipient_creates_and_clamps_cooldown(store):
    service = RegistrationService(store)

    recipient = await service.setup_recipient("g1", payout_id="owner", channel_id="-100", cooldown_seconds=10)

    assert recipient.cooldown_seconds == 300
    stored = await store.get_recipient("g1")
    assert stored.payout_id == "owner"
    assert stored.channel_id == "-100"


@pytest.mark.asyncio
async def test_setup_recipient_update_keeps_omitted_fields_and_timestamp(store):
    await add_recipient(store, "g1", payout_id="owner", channel_id="-100", cooldown=600, last=NOW)
    service = RegistrationService(store)

    await service.setup_recipient("g1", channel_id="-200", cooldown_seconds=10**6)

    stored = await store.get_recipient("g1")
    assert stored.payout_id == "owner"
    assert stored.channel_id == "-200"
    assert stored.cooldown_seconds == 86400
    assert stored.last_delivery_at == NOW


@pytest.mark.asyncio
async def test_submit_campaign_writes_campaign_and_content(store):
    await add_recipient(store, "g1")
    service = RegistrationService(store)

    campaign = await service.submit_campaign(
        advertiser_id="u1",
        recipient_id="g1",
        body="Fresh bread daily",
        link="https://bakery.example",
        label="Order",
        card_code=" CARD ",
        max_times="2",
        now=NOW,
    )

    assert campaign.campaign_id.startswith("u1:")
    campaigns = await store.list_campaigns()
    assert len(campaigns) == 1
    assert campaigns[0].remaining_impressions == 2
    assert campaigns[0].card_code == "CARD"
    content = await store.get_campaign_content(campaign.campaign_id)
    assert content.body == "Fresh bread daily"
    assert content.label == "Order"


@pytest.mark.asyncio
async def test_submissions_at_different_times_get_distinct_ids(store):
    await add_recipient(store, "g1")
    service = RegistrationService(store)
    kwargs = dict(advertiser_id="u1", recipient_id="g1", body="x", link="http://a.example", card_code="c")

    first = await service.submit_campaign(now=NOW, **kwargs)
    second = await service.submit_campaign(now=NOW + timedelta(milliseconds=5), **kwargs)

    assert first.campaign_id != second.campaign_id
    assert len(await store.list_campaigns()) == 2


@pytest.mark.asyncio
async def test_submit_campaign_rejects_bad_link(store):
    await add_recipient(store, "g1")
    service = RegistrationService(store)

    with pytest.raises(RegistrationError):
        await service.submit_campaign(
            advertiser_id="u1", recipient_id="g1", body="x", link="ftp://files.example", card_code="c"
        )
    assert await store.list_campaigns() == []


@pytest.mark.asyncio
async def test_submit_campaign_requires_configured_recipient(store):
    await add_recipient(store, "g1", payout_id=None)
    service = RegistrationService(store)

    with pytest.raises(RegistrationError):
        await service.submit_campaign(
            advertiser_id="u1", recipient_id="g1", body="x", link="https://a.example", card_code="c"
        )
    with pytest.raises(RegistrationError):
        await service.submit_campaign(
            advertiser_id="u1", recipient_id="unknown", body="x", link="https://a.example", card_code="c"
        )


@pytest.mark.asyncio
async def test_setup_with_panel_channel_posts_advertise_panel(store):
    delivery = FakeDeliveryService()
    service = RegistrationService(store, delivery)

    await service.setup_recipient("g1", payout_id="owner", channel_id="-100", panel_channel_id="-300")
    await service.setup_recipient("g1", cooldown_seconds=600)

    assert delivery.panels == [("g1", "-300")]


@pytest.mark.asyncio
async def test_panel_post_failure_does_not_undo_setup(store):
    service = RegistrationService(store, FakeDeliveryService(fail=True))

    recipient = await service.setup_recipient("g1", payout_id="owner", channel_id="-100", panel_channel_id="-300")

    assert recipient.panel_channel_id == "-300"
    assert (await store.get_recipient("g1")).channel_id == "-100"


@pytest.mark.asyncio
async def test_submit_campaign_rejects_label_longer_than_twelve_chars(store):
    await add_recipient(store, "g1")
    service = RegistrationService(store)
    kwargs = dict(advertiser_id="u1", recipient_id="g1", body="x", link="https://a.example", card_code="c")

    with pytest.raises(RegistrationError):
        await service.submit_campaign(label="Thirteen char", now=NOW, **kwargs)
    assert await store.list_campaigns() == []

    campaign = await service.submit_campaign(label="Twelve chars", now=NOW, **kwargs)
    content = await store.get_campaign_content(campaign.campaign_id)
    assert content.label == "Twelve chars"


def test_campaign_payload_caps_label_length():
    payload = dict(advertiser_id="u1", recipient_id="g1", body="x", link="https://a.example", card_code="c")

    assert CampaignSubmitDTO(label="Twelve chars", **payload).label == "Twelve chars"
    with pytest.raises(ValidationError):
        CampaignSubmitDTO(label="Thirteen char", **payload)
