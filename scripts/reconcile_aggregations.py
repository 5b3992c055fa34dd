"""
Run one reconciliation pass by hand.

python scripts/reconcile_aggregations.py [batch] [--now]

--now clears the retry backoff first, so rows waiting out a long delay after
an outage are retried immediately.
"""
import asyncio
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import AsyncSessionLocal
from services.aggregation_service import AggregationService
from core.logger import setup_logging, logger

async def reconcile_aggregations(limit: int, retry_now: bool = False):
    async with AsyncSessionLocal() as session:
        service = AggregationService(session)
        pending = await service.pending_count()
        print(f"Pending aggregations: {pending}")
        if not pending:
            return

        if retry_now:
            cleared = await service.retry_now()
            print(f"Backoff cleared on {cleared} rows")

        result = await service.reconcile_pending(limit=limit)
        print(f"Processed: {result['processed']}  Still failing: {result['failed']}")
        logger.info("Manual reconciliation finished", **result)

if __name__ == "__main__":
    setup_logging()
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    batch = int(args[0]) if args else 500
    asyncio.run(reconcile_aggregations(batch, retry_now="--now" in sys.argv))
