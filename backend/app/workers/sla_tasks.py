"""Celery task for the periodic SLA sweep."""
import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.sla_tasks.run_sla_sweep")
def run_sla_sweep():
    """Check every open inquiry against its SLA policy.

    Runs every SLA_SWEEP_INTERVAL_MINUTES. Creates or refreshes violations,
    closes satisfied ones, and auto-escalates escalation_time breaches.
    Each inquiry commits on its own, so a failure midway keeps earlier work.
    """
    logger.info("run_sla_sweep: starting")
    try:
        from app.db.session import SessionLocal
        from app.services.sla_monitor import run_sweep

        with SessionLocal() as db:
            result = run_sweep(db)
        return result.model_dump()

    except Exception as exc:
        logger.exception("run_sla_sweep failed: %s", exc)
        return {"status": "error", "error": str(exc)}
