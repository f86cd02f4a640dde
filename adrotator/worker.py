import asyncio
import logging
import signal

from adrotator.config import settings
from adrotator.container import delivery_service, payment_worker_service, scheduler_service
from adrotator.db import create_tables


logging.basicConfig(level=logging.INFO, format="[adrotator] %(asctime)s %(levelname)s %(message)s", force=True)
logger = logging.getLogger("worker")
logging.getLogger("aiogram").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def runs_loops() -> bool:
    return settings.bot_role.strip().lower() == "worker"


async def run() -> None:
    # with BOT_ROLE=app the API process already owns the scheduler and payment loops
    if not runs_loops():
        logger.warning("bot_role=%s, not starting loops; set BOT_ROLE=worker", settings.bot_role)
        return

    await create_tables()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await scheduler_service.start()
    await payment_worker_service.start()
    logger.info("scheduler and payment worker started worker_id=%s", payment_worker_service.worker_id)
    try:
        await stop.wait()
    finally:
        await scheduler_service.stop()
        await payment_worker_service.stop()
        await delivery_service.close()
        logger.info("scheduler and payment worker stopped")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
