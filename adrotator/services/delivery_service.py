import logging

from aiogram import Bot
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from adrotator.config import settings
from adrotator.errors import DeliveryFailure
from adrotator.models import DeliveryJob, Recipient
from adrotator.utils import normalize_error_message


PANEL_CALLBACK = "ads_panel_open"


class TelegramDeliveryService:
    def __init__(self, bot: Bot | None = None):
        self.logger = logging.getLogger("delivery_service")
        self._bot = bot

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            if not settings.tg_bot_token:
                raise DeliveryFailure("TG_BOT_TOKEN is missing")
            self._bot = Bot(token=settings.tg_bot_token)
        return self._bot

    @staticmethod
    def build_markup(delivery: DeliveryJob) -> InlineKeyboardMarkup | None:
        if not delivery.link:
            return None
        label = (delivery.label or "").strip() or settings.default_link_label
        return InlineKeyboardMarkup(inline_keyboard=[[InlineKeyboardButton(text=label, url=delivery.link)]])

    @staticmethod
    def build_panel_markup() -> InlineKeyboardMarkup:
        text = settings.panel_button_text
        if settings.advertise_url:
            button = InlineKeyboardButton(text=text, url=settings.advertise_url)
        else:
            button = InlineKeyboardButton(text=text, callback_data=PANEL_CALLBACK)
        return InlineKeyboardMarkup(inline_keyboard=[[button]])

    async def post_panel(self, recipient: Recipient) -> None:
        """Posts the advertise panel advertisers use to start a campaign for this recipient."""
        if not recipient.panel_channel_id:
            raise DeliveryFailure(f"recipient {recipient.id} has no panel channel")
        try:
            await self.bot.send_message(
                chat_id=recipient.panel_channel_id,
                text=settings.panel_text,
                reply_markup=self.build_panel_markup(),
            )
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(normalize_error_message(e)) from e
        self.logger.info("panel posted recipient=%s channel=%s", recipient.id, recipient.panel_channel_id)

    async def post_content(self, recipient: Recipient, delivery: DeliveryJob) -> None:
        if not recipient.channel_id:
            raise DeliveryFailure(f"recipient {recipient.id} has no delivery channel")
        try:
            await self.bot.send_message(
                chat_id=recipient.channel_id,
                text=delivery.body,
                reply_markup=self.build_markup(delivery),
            )
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(normalize_error_message(e)) from e
        self.logger.info("ad posted campaign=%s recipient=%s", delivery.campaign_id, recipient.id)

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()
