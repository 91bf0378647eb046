from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from ..clock import LifecycleState
from ..exceptions import NotFound
from ..models import Candidate, Election, Vote


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateTally:
    candidate_id: int
    name: str
    party: str
    photo: str
    votes: int
    cached_votes: int
    created_at: datetime

    @property
    def drifted(self) -> bool:
        return self.votes != self.cached_votes


@dataclass(frozen=True)
class ElectionResults:
    election_id: int
    total_votes: int
    candidates: list[CandidateTally]
    generated_at: datetime
    drifted_candidate_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class CounterCorrection:
    candidate_id: int
    previous: int
    derived: int


@dataclass(frozen=True)
class ReconcileReport:
    election_id: int
    total_votes: int
    candidates_checked: int
    corrections: list[CounterCorrection]
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.corrections)

    def as_dict(self) -> dict:
        return {
            "election_id": self.election_id,
            "total_votes": self.total_votes,
            "candidates_checked": self.candidates_checked,
            "dry_run": self.dry_run,
            "corrections": [
                {"candidate_id": c.candidate_id, "previous": c.previous, "derived": c.derived}
                for c in self.corrections
            ],
        }


def _counts_by_candidate(election_id: int) -> dict[int, int]:
    rows = Vote.objects.filter(election_id=election_id).values("candidate_id").annotate(total=Count("id"))
    return {int(row["candidate_id"]): int(row["total"]) for row in rows}


RECONCILE_GUARD_KEY = "elections:reconcile-scheduled:%s"


def _schedule_reconcile(election_id: int) -> None:
    from ..tasks import reconcile_election_tally

    guard_key = RECONCILE_GUARD_KEY % election_id
    guard_seconds = int(getattr(settings, "ELECTIONS_RECONCILE_GUARD_SECONDS", 60))
    if not cache.add(guard_key, 1, timeout=guard_seconds):
        logger.info("tally.reconcile_already_scheduled", extra={"election_id": election_id})
        return

    def _enqueue():
        try:
            reconcile_election_tally.delay(election_id)
        except Exception:
            cache.delete(guard_key)
            logger.exception("tally.reconcile_enqueue_failed", extra={"election_id": election_id})

    transaction.on_commit(_enqueue)


def results(election_id: int) -> ElectionResults:
    """Tally an election from the vote log.

    The per candidate ``vote_count`` column is only compared against the derived counts.
    Candidates whose cached counter disagrees are listed in ``drifted_candidate_ids`` and,
    unless disabled through ``ELECTIONS_AUTO_RECONCILE_ON_DRIFT``, a reconciliation is
    queued once the current transaction commits.
    """

    if not Election.objects.filter(id=election_id).exists():
        raise NotFound(NotFound.KIND_ELECTION)

    counts = _counts_by_candidate(election_id)
    candidates = Candidate.objects.filter(election_id=election_id).order_by("created_at", "id")

    tallies = [
        CandidateTally(
            candidate_id=candidate.id,
            name=candidate.name,
            party=candidate.party,
            photo=candidate.photo,
            votes=counts.get(candidate.id, 0),
            cached_votes=candidate.vote_count,
            created_at=candidate.created_at,
        )
        for candidate in candidates
    ]
    # Stable sort keeps creation order among equal counts.
    tallies.sort(key=lambda item: -item.votes)

    drifted = sorted(item.candidate_id for item in tallies if item.drifted)
    if drifted:
        logger.warning(
            "tally.counter_drift",
            extra={"election_id": election_id, "candidate_ids": drifted},
        )
        if getattr(settings, "ELECTIONS_AUTO_RECONCILE_ON_DRIFT", True):
            _schedule_reconcile(election_id)

    return ElectionResults(
        election_id=election_id,
        total_votes=sum(counts.values()),
        candidates=tallies,
        generated_at=timezone.now(),
        drifted_candidate_ids=drifted,
    )


def determine_winners(election_results: ElectionResults, state: LifecycleState) -> list[CandidateTally]:
    if state != LifecycleState.CLOSED or election_results.total_votes <= 0:
        return []
    if not election_results.candidates:
        return []

    top = max(item.votes for item in election_results.candidates)
    return [item for item in election_results.candidates if item.votes == top]


def reconcile_tally(election_id: int, dry_run: bool = False) -> ReconcileReport:
    """Rewrite every candidate counter of an election from the vote log.

    Candidate rows are locked for the duration, so admissions touching the same rows
    either finish before the aggregation or wait until the corrected values are written.
    """

    if not Election.objects.filter(id=election_id).exists():
        raise NotFound(NotFound.KIND_ELECTION)

    with transaction.atomic():
        locked = list(
            Candidate.objects.select_for_update()
            .filter(election_id=election_id)
            .order_by("id")
            .only("id", "vote_count")
        )
        counts = _counts_by_candidate(election_id)

        corrections: list[CounterCorrection] = []
        for candidate in locked:
            derived = counts.get(candidate.id, 0)
            if candidate.vote_count == derived:
                continue
            corrections.append(CounterCorrection(candidate.id, candidate.vote_count, derived))
            if not dry_run:
                Candidate.objects.filter(id=candidate.id).update(vote_count=derived)

    if not dry_run:
        cache.delete(RECONCILE_GUARD_KEY % election_id)

    report = ReconcileReport(
        election_id=election_id,
        total_votes=sum(counts.values()),
        candidates_checked=len(locked),
        corrections=corrections,
        dry_run=dry_run,
    )
    logger.info(
        "tally.reconciled",
        extra={
            "election_id": election_id,
            "corrections": len(corrections),
            "dry_run": dry_run,
        },
    )
    return report
