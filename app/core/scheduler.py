import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.jobstores.memory import MemoryJobStore

from app.core.config import settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    job_defaults={"coalesce": True, "max_instances": 1},
)


def prune_revoked_tokens():
    """Drop revocation entries whose tokens have expired on their own."""
    from app.core.revocation import get_revocation_registry

    try:
        get_revocation_registry().prune()
    except Exception as e:
        logger.error(f"Revocation prune failed: {e}", exc_info=True)


def reconcile_stock():
    """Rebuild device committed counters from live assignments."""
    from app.core.database import SessionLocal
    from app.services.stock_ledger import StockLedger

    db = SessionLocal()
    try:
        StockLedger.reconcile(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Stock reconciliation failed: {e}", exc_info=True)
    finally:
        db.close()


def start_scheduler():
    """Register the maintenance jobs and start the scheduler."""
    scheduler.add_job(
        prune_revoked_tokens,
        "interval",
        minutes=settings.REVOCATION_PRUNE_INTERVAL_MINUTES,
        id="prune_revoked_tokens",
        replace_existing=True,
    )
    scheduler.add_job(
        reconcile_stock,
        "interval",
        minutes=settings.STOCK_RECONCILE_INTERVAL_MINUTES,
        id="reconcile_stock",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("APScheduler started for revocation pruning and stock reconciliation")


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
