"""
One-off repair job: confirm every customer order whose paid payment was never
reconciled (for example after a request timed out mid-way).

Usage (from backend/): python -m scripts.sync_paid_payments
"""
import asyncio
import logging
from config import AsyncSessionLocal
from routers.payments.helpers import sync_paid_payments

logger = logging.getLogger(__name__)


async def main():
    if AsyncSessionLocal is None:
        raise Exception("Database not configured")

    async with AsyncSessionLocal() as session:
        result = await sync_paid_payments(session)

    logger.info(f"Done. Scanned {result['scanned']} paid payments, repaired {result['repaired']} orders")
    return result


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
