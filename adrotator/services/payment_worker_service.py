import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from adrotator.config import settings
from adrotator.errors import DeliveryFailure
from adrotator.models import DeliveryJob, PaymentJob
from adrotator.services.delivery_service import TelegramDeliveryService
from adrotator.services.payment_client import CoinPaymentClient
from adrotator.services.queue_store import QueueStore
from adrotator.utils import normalize_error_message, utcnow


class PaymentWorkerService:
    """Drains the payment queue one job at a time.

    Each payment job moves Enqueued -> PaymentAttempted -> Delivered | Discarded.
    There is no retry: the payment row is removed after the attempt whatever
    the result, and the matching delivery row is removed with it.

    Jobs are claimed in the store under worker_id before they are charged, so
    two workers sharing a database never attempt the same payment row.
    """

    def __init__(
        self,
        store: QueueStore,
        payment_client: CoinPaymentClient,
        delivery_service: TelegramDeliveryService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        price: float | None = None,
        min_spacing_ms: int | None = None,
        idle_delay_ms: int | None = None,
        claim_ttl_ms: int | None = None,
        worker_id: str | None = None,
    ):
        self.store = store
        self.payment_client = payment_client
        self.delivery_service = delivery_service
        self.sleep = sleep
        self.clock = clock
        self.price = settings.ad_price if price is None else price
        self.min_spacing_ms = settings.payment_min_spacing_ms if min_spacing_ms is None else min_spacing_ms
        self.idle_delay_ms = settings.payment_idle_delay_ms if idle_delay_ms is None else idle_delay_ms
        self.claim_ttl_ms = settings.payment_claim_ttl_ms if claim_ttl_ms is None else claim_ttl_ms
        self.worker_id = worker_id or uuid.uuid4().hex
        self.logger = logging.getLogger("payment_worker")
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
        while not self._stopping.is_set():
            try:
                outcome = await self.process_next()
            except Exception:
                self.logger.exception("payment worker iteration failed")
                outcome = "error"
            if outcome in ("idle", "error"):
                await self._idle_wait()

    async def _idle_wait(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=max(0, self.idle_delay_ms) / 1000)
        except asyncio.TimeoutError:
            pass

    async def process_next(self) -> str:
        lease = max(0, self.claim_ttl_ms) / 1000
        job = await self.store.claim_oldest_payment_job(self.worker_id, self.clock(), lease)
        if job is None:
            await self.store.reset_sequences_if_empty()
            return "idle"

        # rate limit on the payment API, applied before every attempt
        await self.sleep(max(0, self.min_spacing_ms) / 1000)
        paid = await self._charge(job)

        await self.store.delete_payment_job(job.id)
        delivery = await self.store.claim_oldest_delivery_job_by_campaign(
            job.campaign_id, self.worker_id, self.clock(), lease
        )

        if not paid:
            if delivery is not None:
                await self.store.delete_delivery_job(delivery.id)
            outcome = "discarded"
        elif delivery is None:
            outcome = "paid-no-delivery"
        else:
            outcome = await self._deliver(delivery)
            await self.store.delete_delivery_job(delivery.id)

        self.logger.info(
            "payment job processed %s",
            {
                "queue": job.id,
                "campaignId": job.campaign_id,
                "deliveryQueue": delivery.id if delivery is not None else None,
                "outcome": outcome,
            },
        )
        return outcome

    async def _charge(self, job: PaymentJob) -> bool:
        try:
            await self.payment_client.charge_card(job.card_code, job.payout_id, self.price)
        except Exception as e:
            self.logger.warning(
                "payment failed queue=%s campaign=%s error=%s",
                job.id,
                job.campaign_id,
                normalize_error_message(e),
            )
            return False
        return True

    async def _deliver(self, delivery: DeliveryJob) -> str:
        recipient = await self.store.get_recipient(delivery.recipient_id)
        if recipient is None or not recipient.channel_id:
            self.logger.warning(
                "recipient unavailable, skipping post queue=%s recipient=%s",
                delivery.id,
                delivery.recipient_id,
            )
            return "delivery-failed"
        try:
            await self.delivery_service.post_content(recipient, delivery)
        except DeliveryFailure as e:
            self.logger.warning(
                "delivery failed queue=%s recipient=%s error=%s",
                delivery.id,
                recipient.id,
                normalize_error_message(e),
            )
            return "delivery-failed"
        return "delivered"
