"""Celery tasks for decision-log maintenance."""
from __future__ import annotations

import logging

from celery import Celery

from medgate.app import config
from medgate.app.infra.db import get_session
from medgate.app.services.audit import AuditLog, SqlAuditSink

logger = logging.getLogger(__name__)

celery_app = Celery("medgate", broker=config.CELERY_BROKER_URL, backend=config.CELERY_BACKEND_URL)


@celery_app.task(name="audit.verify_chain")
def verify_decision_chain() -> dict:
    """Recompute the decision-log hash chain and report any broken links."""
    report = AuditLog(SqlAuditSink(get_session)).verify()
    if report.ok:
        logger.info("decision chain intact (%d records)", report.checked)
    else:
        logger.error("decision chain broken: %s", "; ".join(report.problems))
    return {"ok": report.ok, "checked": report.checked, "problems": report.problems}
