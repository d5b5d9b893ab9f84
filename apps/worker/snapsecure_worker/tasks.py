"""Periodic integrity tasks."""

import logging
from typing import Optional

from celery import Task

from snapsecure_api.container import SecurityContainer, build_container
from snapsecure_api.db.session import create_session_factory, get_engine
from snapsecure_api.errors import DependencyUnavailable
from snapsecure_api.settings import get_settings
from snapsecure_worker.celery_app import celery_app

logger = logging.getLogger(__name__)


class ContainerTask(Task):
    """Task with a lazily built service container, shared per worker process."""

    _container: Optional[SecurityContainer] = None

    @property
    def container(self) -> SecurityContainer:
        if ContainerTask._container is None:
            ContainerTask._container = build_container(
                get_settings(), create_session_factory(get_engine())
            )
        return ContainerTask._container


@celery_app.task(base=ContainerTask, bind=True, max_retries=3)
def verify_ledger_integrity(self) -> dict:
    """Full ledger scan. Corrupted entries produce critical security log rows."""
    log_extra = {"task": "verify_ledger_integrity"}
    try:
        report = self.container.ledger.verify_all()
    except DependencyUnavailable as e:
        logger.warning(f"Ledger verification deferred: {e}", extra=log_extra)
        raise self.retry(exc=e, countdown=60)

    if not report.valid:
        logger.critical(
            "Ledger integrity check failed",
            extra={
                **log_extra,
                "corrupted": len(report.corrupted_hashes),
                "broken_links": len(report.broken_links),
            },
        )
    else:
        logger.info(
            "Ledger integrity check passed",
            extra={**log_extra, "entries_checked": report.entries_checked},
        )
    return report.to_dict()


@celery_app.task(base=ContainerTask, bind=True, max_retries=3)
def reconcile_security_log(self) -> int:
    """Rebuild security log rows lost after a successful ledger append."""
    try:
        return self.container.audit.reconcile()
    except DependencyUnavailable as e:
        logger.warning(f"Reconcile deferred: {e}", extra={"task": "reconcile_security_log"})
        raise self.retry(exc=e, countdown=60)
