from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ..clock import LifecycleState, classify
from ..exceptions import AlreadyVoted, NotFound, NotOpen
from ..models import Candidate, Election, Vote


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteReceipt:
    vote_id: int
    voter_id: int
    election_id: int
    candidate_id: int
    cast_at: datetime

    @property
    def receipt_code(self) -> str:
        return f"VOTO-{self.cast_at.year}-{self.election_id:04d}-{self.vote_id:06d}"


@dataclass(frozen=True)
class VoteStatus:
    has_voted: bool
    candidate_id: int | None = None
    candidate_name: str = ""
    cast_at: datetime | None = None


def _existing_vote(*, voter_id: int, election_id: int) -> Vote | None:
    return (
        Vote.objects.select_related("candidate")
        .filter(voter_id=voter_id, election_id=election_id)
        .first()
    )


def admit_vote(*, voter_id: int, election_id: int, candidate_id: int, now: datetime | None = None) -> VoteReceipt:
    """Accept one vote or raise the first rejection that applies.

    The vote insert and the candidate counter increment share one transaction. The
    ``(voter, election)`` unique constraint decides races: a losing concurrent attempt
    surfaces as ``AlreadyVoted``, never as a second vote.
    """

    now = now or timezone.now()

    election = Election.objects.filter(id=election_id).first()
    if election is None:
        raise NotFound(NotFound.KIND_ELECTION)

    state = classify(election, now)
    if state != LifecycleState.OPEN:
        raise NotOpen(state)

    candidate = Candidate.objects.filter(id=candidate_id, election_id=election.id).only("id", "election_id").first()
    if candidate is None:
        raise NotFound(NotFound.KIND_CANDIDATE)

    if _existing_vote(voter_id=voter_id, election_id=election.id) is not None:
        logger.info(
            "ballot.duplicate_rejected",
            extra={"election_id": election.id, "voter_id": voter_id, "stage": "precheck"},
        )
        raise AlreadyVoted()

    try:
        with transaction.atomic():
            vote = Vote.objects.create(
                voter_id=voter_id,
                election_id=election.id,
                candidate_id=candidate.id,
                cast_at=now,
            )
            updated = Candidate.objects.filter(id=candidate.id).update(vote_count=F("vote_count") + 1)
            if updated != 1:
                # Candidate vanished between lookup and insert; roll the vote back.
                raise Candidate.DoesNotExist()
    except Candidate.DoesNotExist:
        raise NotFound(NotFound.KIND_CANDIDATE)
    except IntegrityError:
        if _existing_vote(voter_id=voter_id, election_id=election.id) is not None:
            logger.info(
                "ballot.duplicate_rejected",
                extra={"election_id": election.id, "voter_id": voter_id, "stage": "constraint"},
            )
            raise AlreadyVoted()
        if not Candidate.objects.filter(id=candidate.id, election_id=election.id).exists():
            raise NotFound(NotFound.KIND_CANDIDATE)
        raise

    logger.info(
        "ballot.vote_admitted",
        extra={"election_id": election.id, "vote_id": vote.id},
    )
    return VoteReceipt(
        vote_id=vote.id,
        voter_id=voter_id,
        election_id=election.id,
        candidate_id=candidate.id,
        cast_at=vote.cast_at,
    )


def has_voted(*, voter_id: int, election_id: int) -> VoteStatus:
    vote = _existing_vote(voter_id=voter_id, election_id=election_id)
    if vote is None:
        return VoteStatus(has_voted=False)
    return VoteStatus(
        has_voted=True,
        candidate_id=vote.candidate_id,
        candidate_name=vote.candidate.name,
        cast_at=vote.cast_at,
    )
