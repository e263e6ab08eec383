"""
Housekeeping Celery Tasks
=========================

Abandoned checkouts leave pending payments that never complete. They are
never materialized after expires_at, so once expired they carry no
information worth keeping. Run via Celery Beat every 15 minutes.
"""

import logging
from datetime import datetime
from typing import Optional

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(name="purge_expired_pending_payments")
def purge_expired_pending_payments():
    import asyncio
    return asyncio.run(_purge_expired_pending_payments_async())


async def _purge_expired_pending_payments_async(session_factory=None, now: Optional[datetime] = None) -> dict:
    from storefront.services.pending_payments import PendingPaymentStore

    if session_factory is None:
        from storefront.database import async_session_maker
        session_factory = async_session_maker

    try:
        async with session_factory() as session:
            purged = await PendingPaymentStore(session).purge_expired(now=now)
            await session.commit()
    except Exception as e:
        logger.error(f"Pending payment purge failed: {e}")
        return {"error": str(e)}

    logger.info(f"Pending payment purge complete: {purged} removed")
    return {"purged": purged}
