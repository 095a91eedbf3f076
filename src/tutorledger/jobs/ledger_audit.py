"""Background scheduler for the nightly ledger audit."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from ..core.config import get_settings
from ..core.database import SessionLocal
from ..services.ledger_service import LedgerAudit, audit_all

logger = logging.getLogger(__name__)

_scheduler = AsyncIOScheduler(timezone="UTC")


def run_audit_once() -> list[LedgerAudit]:
    """Audit every subscription and log the ones that drifted from the ledger."""

    session = SessionLocal()
    try:
        audits = audit_all(session)
    finally:
        session.close()

    drifted = [audit for audit in audits if not audit.consistent]
    for audit in drifted:
        logger.warning(
            "subscription %s out of sync: cached %s, ledger %s, chain breaks %s",
            audit.subscription_id,
            audit.cached_credits,
            audit.ledger_total,
            audit.chain_breaks,
        )
    logger.info("ledger audit completed: %s subscriptions, %s drifted", len(audits), len(drifted))
    return audits


async def _scheduled_job() -> None:
    try:
        run_audit_once()
    except Exception:  # pragma: no cover - safeguard for background job
        logger.exception("ledger audit job failed")
        raise


def register_scheduler(app: FastAPI) -> None:
    """Attach APScheduler lifecycle hooks to the FastAPI app."""

    settings = get_settings()
    if not settings.ledger_audit_enabled:
        logger.info("ledger audit scheduler disabled")
        return

    _scheduler.add_job(
        _scheduled_job,
        "cron",
        hour=settings.ledger_audit_hour,
        minute=settings.ledger_audit_minute,
        id="ledger_audit",
        misfire_grace_time=3600,
        replace_existing=True,
    )

    @app.on_event("startup")
    async def start_scheduler() -> None:
        if not _scheduler.running:
            _scheduler.start()
            logger.info("ledger audit scheduler started")

    @app.on_event("shutdown")
    async def shutdown_scheduler() -> None:
        if _scheduler.running:
            _scheduler.shutdown(wait=False)
            logger.info("ledger audit scheduler stopped")
