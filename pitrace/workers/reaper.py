"""
Expiry Reaper Worker.

Moves pending payments whose approval window has closed to expired.
Reads already report them as expired; this makes it durable.
"""

import logging

from pitrace.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_reaper(bind=None, limit=None) -> int:
    """
    One reaper pass on its own engine.

    Celery runs each task in a fresh event loop, so the pooled app engine
    can't be shared here.
    """
    from pitrace.config import settings
    from pitrace.database import build_engine, build_session_maker, get_database_url
    from pitrace.services.catalog_service import CatalogService
    from pitrace.services.payment_service import PaymentService
    from pitrace.services.payment_store import PaymentStore

    engine = bind or build_engine(get_database_url())
    try:
        session_maker = build_session_maker(engine)
        service = PaymentService(
            PaymentStore(session_maker),
            CatalogService(session_maker),
            settings=settings,
        )
        return await service.reap(limit=limit or settings.reaper_batch_size)
    finally:
        if bind is None:
            await engine.dispose()


@celery_app.task(bind=True, max_retries=3)
def reap_expired_payments(self):
    """Expire overdue pending payments. Runs every reaper_interval_seconds."""
    import asyncio

    try:
        count = asyncio.run(run_reaper())
        logger.info(f"Reaper expired {count} payments")
        return {"success": True, "count": count}
    except Exception as e:
        logger.error(f"Expiry reaper failed: {e}")
        raise self.retry(exc=e, countdown=60)
