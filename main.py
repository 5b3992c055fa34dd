import asyncio
import sys
from redis.asyncio import Redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.config import settings
from core.logger import setup_logging, logger
from db.session import redis_client
from services.reconcile_service import run_reconciliation

async def start_api():
    import uvicorn
    from api.main import app
    config = uvicorn.Config(app, host=settings.API_HOST, port=settings.API_PORT, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()

def start_scheduler(redis: Redis) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")

    # Retry aggregation steps left pending by failed finalizes
    scheduler.add_job(
        run_reconciliation,
        trigger="interval",
        seconds=settings.RECONCILE_INTERVAL_SECONDS,
        args=[redis],
        id=settings.RECONCILE_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Scheduler started (Aggregation reconciliation).", interval=settings.RECONCILE_INTERVAL_SECONDS)
    return scheduler

async def run_worker(redis: Redis):
    start_scheduler(redis)
    # Keep the loop alive for the scheduler
    await asyncio.Event().wait()

async def main():
    # Parse mode from CLI args first
    mode = "all"
    if len(sys.argv) > 1:
        if "api" in sys.argv: mode = "api"
        elif "worker" in sys.argv: mode = "worker"

    # Setup structured logging
    setup_logging()

    if mode == "api":
        # For scaling, run 'uvicorn api.main:app' directly and one 'worker' process
        logger.info("Starting API Only Mode...", env=settings.ENV)
        await start_api()
        return

    redis = redis_client()

    try:
        if mode == "worker":
            logger.info("Starting Reconciliation Worker...", env=settings.ENV)
            await run_worker(redis)
        else: # mode == "all"
            logger.info("Starting All (API + Worker)...", env=settings.ENV)
            start_scheduler(redis)
            await start_api()
    finally:
        await redis.aclose()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
