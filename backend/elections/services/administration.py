from __future__ import annotations

import logging

from django.db import transaction

from ..exceptions import Conflict, NotFound
from ..models import Candidate, Election, Vote


logger = logging.getLogger(__name__)

ELECTION_EDITABLE_FIELDS = ("title", "description", "opens_at", "closes_at", "enabled")
ELECTION_WINDOW_FIELDS = ("opens_at", "closes_at")
CANDIDATE_EDITABLE_FIELDS = ("name", "party", "description", "photo")


def election_has_votes(election_id: int) -> bool:
    return Vote.objects.filter(election_id=election_id).exists()


def _get_election(election_id: int, *, for_update: bool = False) -> Election:
    queryset = Election.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    election = queryset.filter(id=election_id).first()
    if election is None:
        raise NotFound(NotFound.KIND_ELECTION)
    return election


def _get_candidate(candidate_id: int, *, for_update: bool = False) -> Candidate:
    queryset = Candidate.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    candidate = queryset.filter(id=candidate_id).first()
    if candidate is None:
        raise NotFound(NotFound.KIND_CANDIDATE)
    return candidate


def create_election(*, created_by, title: str, description: str, opens_at, closes_at, enabled: bool = True) -> Election:
    election = Election(
        title=(title or "").strip(),
        description=(description or "").strip(),
        opens_at=opens_at,
        closes_at=closes_at,
        enabled=enabled,
        created_by=created_by,
    )
    election.save()
    logger.info("election.created", extra={"election_id": election.id})
    return election


@transaction.atomic
def update_election(election_id: int, **changes) -> Election:
    """Apply a partial update to an election.

    The voting window is frozen once the election holds a vote; sending the same value
    again is accepted so full-form clients do not trip over it.
    """

    election = _get_election(election_id, for_update=True)
    unknown = set(changes) - set(ELECTION_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Campos no editables: {', '.join(sorted(unknown))}")

    window_changed = any(
        field in changes and changes[field] != getattr(election, field)
        for field in ELECTION_WINDOW_FIELDS
    )
    if window_changed and election_has_votes(election.id):
        raise Conflict("No se pueden modificar las fechas de una elección que ya tiene votos registrados.")

    for field, value in changes.items():
        if isinstance(value, str):
            value = value.strip()
        setattr(election, field, value)
    election.save()
    logger.info("election.updated", extra={"election_id": election.id, "fields": sorted(changes)})
    return election


@transaction.atomic
def delete_election(election_id: int) -> None:
    election = _get_election(election_id, for_update=True)
    if election_has_votes(election.id):
        raise Conflict("No se puede eliminar la elección porque ya tiene votos registrados.")

    election.delete()
    logger.info("election.deleted", extra={"election_id": election_id})


def create_candidate(
    *,
    election_id: int,
    name: str,
    party: str = "",
    description: str = "",
    photo: str = "",
) -> Candidate:
    election = _get_election(election_id)
    candidate = Candidate(
        election=election,
        name=name,
        party=party or Candidate.PARTY_INDEPENDENT,
        description=description or "",
        photo=photo or "",
    )
    candidate.save()
    logger.info("candidate.created", extra={"election_id": election.id, "candidate_id": candidate.id})
    return candidate


@transaction.atomic
def update_candidate(candidate_id: int, **changes) -> Candidate:
    candidate = _get_candidate(candidate_id, for_update=True)
    unknown = set(changes) - set(CANDIDATE_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Campos no editables: {', '.join(sorted(unknown))}")

    if not changes:
        return candidate

    for field, value in changes.items():
        setattr(candidate, field, value)
    # vote_count is never written from here.
    candidate.save(update_fields=sorted(changes))
    logger.info("candidate.updated", extra={"candidate_id": candidate.id, "fields": sorted(changes)})
    return candidate


@transaction.atomic
def delete_candidate(candidate_id: int) -> None:
    candidate = _get_candidate(candidate_id, for_update=True)
    if Vote.objects.filter(candidate_id=candidate.id).exists():
        raise Conflict("No se puede eliminar la candidatura porque ya tiene votos registrados.")

    candidate.delete()
    logger.info("candidate.deleted", extra={"candidate_id": candidate_id})
