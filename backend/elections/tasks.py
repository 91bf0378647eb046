from __future__ import annotations

import logging

from celery import shared_task
from django.db import OperationalError

from audit.services import log_system_event

from .exceptions import NotFound
from .services.tally import reconcile_tally


logger = logging.getLogger(__name__)


@shared_task(bind=True, autoretry_for=(OperationalError,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def reconcile_election_tally(self, election_id: int) -> dict | None:
    try:
        report = reconcile_tally(int(election_id))
    except NotFound:
        logger.info("tally.reconcile_skip", extra={"election_id": election_id, "reason": "election_not_found"})
        return None

    if report.changed:
        log_system_event(
            event_type="ELECTION_TALLY_RECONCILED",
            object_type="Election",
            object_id=report.election_id,
            metadata={**report.as_dict(), "trigger": "task"},
        )
    return report.as_dict()
