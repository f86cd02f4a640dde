from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adrotator.db import db_session
from adrotator.errors import LoadFailure, WriteFailure
from adrotator.models import Campaign, CampaignContent, DeliveryJob, PaymentJob, Recipient


QUEUE_TABLES = (DeliveryJob.__tablename__, PaymentJob.__tablename__)


class QueueStore:
    """Durable queues plus the per-campaign and per-recipient state the scheduler mutates.

    Every public call runs in its own transaction. Reads wrap driver errors in
    LoadFailure, writes in WriteFailure.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory

    def session(self):
        return db_session(self.session_factory)

    async def _read(self, statement):
        try:
            async with self.session() as db:
                return (await db.execute(statement)).scalars().all()
        except SQLAlchemyError as exc:
            raise LoadFailure(str(exc)) from exc

    async def _read_one(self, statement):
        try:
            async with self.session() as db:
                return (await db.execute(statement)).scalars().first()
        except SQLAlchemyError as exc:
            raise LoadFailure(str(exc)) from exc

    async def list_recipients(self) -> list[Recipient]:
        return list(await self._read(select(Recipient).order_by(Recipient.id)))

    async def get_recipient(self, recipient_id: str) -> Recipient | None:
        return await self._read_one(select(Recipient).where(Recipient.id == recipient_id))

    async def list_campaigns(self) -> list[Campaign]:
        return list(
            await self._read(select(Campaign).order_by(Campaign.advertiser_id, Campaign.campaign_id))
        )

    async def get_campaign_content(self, campaign_id: str) -> CampaignContent | None:
        return await self._read_one(select(CampaignContent).where(CampaignContent.campaign_id == campaign_id))

    async def pop_oldest_payment_job(self) -> PaymentJob | None:
        # The row stays queued until delete_payment_job, so a crash mid-payment resumes it.
        return await self._read_one(select(PaymentJob).order_by(PaymentJob.id.asc()).limit(1))

    async def find_oldest_delivery_job_by_campaign(self, campaign_id: str) -> DeliveryJob | None:
        return await self._read_one(
            select(DeliveryJob)
            .where(DeliveryJob.campaign_id == campaign_id)
            .order_by(DeliveryJob.id.asc())
            .limit(1)
        )

    async def claim_oldest_payment_job(
        self, worker_id: str, now: datetime, lease_seconds: float
    ) -> PaymentJob | None:
        """Oldest payment job nobody holds, marked as held by worker_id.

        A claim older than lease_seconds counts as abandoned and can be taken
        over, so a job held by a crashed worker is picked up again.
        """
        return await self._claim(PaymentJob, (), worker_id, now, lease_seconds)

    async def claim_oldest_delivery_job_by_campaign(
        self, campaign_id: str, worker_id: str, now: datetime, lease_seconds: float
    ) -> DeliveryJob | None:
        return await self._claim(
            DeliveryJob, (DeliveryJob.campaign_id == campaign_id,), worker_id, now, lease_seconds
        )

    async def _claim(self, model, filters, worker_id: str, now: datetime, lease_seconds: float):
        claimable = or_(
            model.claimed_by.is_(None),
            model.claimed_by == worker_id,
            model.claimed_at < now - timedelta(seconds=lease_seconds),
        )
        try:
            async with self.session() as db:
                candidate = (
                    await db.execute(
                        select(model.id).where(*filters, claimable).order_by(model.id.asc()).limit(1)
                    )
                ).scalar()
                if candidate is None:
                    return None
                # the guard is re-evaluated at write time, so only one worker wins the row
                result = await db.execute(
                    update(model)
                    .where(model.id == candidate, claimable)
                    .values(claimed_by=worker_id, claimed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                return (await db.execute(select(model).where(model.id == candidate))).scalars().first()
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def list_delivery_jobs(self) -> list[DeliveryJob]:
        return list(await self._read(select(DeliveryJob).order_by(DeliveryJob.id.asc())))

    async def list_payment_jobs(self) -> list[PaymentJob]:
        return list(await self._read(select(PaymentJob).order_by(PaymentJob.id.asc())))

    async def queue_depths(self) -> dict[str, int]:
        try:
            async with self.session() as db:
                deliveries = (await db.execute(select(func.count()).select_from(DeliveryJob))).scalar_one()
                payments = (await db.execute(select(func.count()).select_from(PaymentJob))).scalar_one()
        except SQLAlchemyError as exc:
            raise LoadFailure(str(exc)) from exc
        return {"deliveryJobs": int(deliveries), "paymentJobs": int(payments)}

    async def append_delivery_jobs(self, jobs: Sequence[DeliveryJob]) -> None:
        try:
            async with self.session() as db:
                await self._append(db, jobs)
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def append_payment_jobs(self, jobs: Sequence[PaymentJob]) -> None:
        try:
            async with self.session() as db:
                await self._append(db, jobs)
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def delete_delivery_job(self, job_id: int) -> None:
        await self._write(delete(DeliveryJob).where(DeliveryJob.id == job_id))

    async def delete_payment_job(self, job_id: int) -> None:
        await self._write(delete(PaymentJob).where(PaymentJob.id == job_id))

    async def update_recipient_last_delivery(self, recipient_id: str, timestamp: datetime) -> None:
        await self._write(self._advance_last_delivery(recipient_id, timestamp))

    async def decrement_or_remove_campaign(self, advertiser_id: str, campaign_id: str) -> None:
        try:
            async with self.session() as db:
                await self._decrement(db, advertiser_id, campaign_id)
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def commit_round(
        self,
        deliveries: Sequence[DeliveryJob],
        payments: Sequence[PaymentJob],
        recipient_ids: Iterable[str],
        campaign_keys: Iterable[tuple[str, str]],
        now: datetime,
    ) -> None:
        """Enqueue a round's batches and apply its state changes in one transaction."""
        try:
            async with self.session() as db:
                await self._append(db, deliveries)
                await self._append(db, payments)
                for recipient_id in recipient_ids:
                    await db.execute(self._advance_last_delivery(recipient_id, now))
                for advertiser_id, campaign_id in campaign_keys:
                    await self._decrement(db, advertiser_id, campaign_id)
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def reset_sequences_if_empty(self) -> bool:
        try:
            async with self.session() as db:
                deliveries = (await db.execute(select(func.count()).select_from(DeliveryJob))).scalar_one()
                payments = (await db.execute(select(func.count()).select_from(PaymentJob))).scalar_one()
                if deliveries or payments:
                    return False

                dialect = db.get_bind().dialect.name
                if dialect == "sqlite":
                    await db.execute(
                        text("DELETE FROM sqlite_sequence WHERE name IN (:a, :b)"),
                        {"a": QUEUE_TABLES[0], "b": QUEUE_TABLES[1]},
                    )
                elif dialect == "postgresql":
                    for table in QUEUE_TABLES:
                        await db.execute(
                            text("SELECT setval(pg_get_serial_sequence(:table, 'id'), 1, false)"),
                            {"table": table},
                        )
                return True
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    async def _write(self, statement) -> None:
        try:
            async with self.session() as db:
                await db.execute(statement)
        except SQLAlchemyError as exc:
            raise WriteFailure(str(exc)) from exc

    @staticmethod
    async def _append(db: AsyncSession, jobs: Sequence[DeliveryJob | PaymentJob]) -> None:
        # flush per row so ids follow list order
        for job in jobs:
            db.add(job)
            await db.flush()

    @staticmethod
    def _advance_last_delivery(recipient_id: str, timestamp: datetime):
        return (
            update(Recipient)
            .where(
                Recipient.id == recipient_id,
                or_(Recipient.last_delivery_at.is_(None), Recipient.last_delivery_at < timestamp),
            )
            .values(last_delivery_at=timestamp)
        )

    @staticmethod
    async def _decrement(db: AsyncSession, advertiser_id: str, campaign_id: str) -> None:
        campaign = (
            await db.execute(
                select(Campaign).where(
                    Campaign.advertiser_id == advertiser_id,
                    Campaign.campaign_id == campaign_id,
                )
            )
        ).scalars().first()
        if campaign is None or campaign.remaining_impressions is None:
            return
        remaining = campaign.remaining_impressions - 1
        if remaining <= 0:
            await db.delete(campaign)
        else:
            campaign.remaining_impressions = remaining
