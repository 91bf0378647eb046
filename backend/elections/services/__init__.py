from .administration import (
    create_candidate,
    create_election,
    delete_candidate,
    delete_election,
    election_has_votes,
    update_candidate,
    update_election,
)
from .ballot import VoteReceipt, VoteStatus, admit_vote, has_voted
from .tally import (
    CandidateTally,
    CounterCorrection,
    ElectionResults,
    ReconcileReport,
    determine_winners,
    reconcile_tally,
    results,
)

__all__ = [
    "CandidateTally",
    "CounterCorrection",
    "ElectionResults",
    "ReconcileReport",
    "VoteReceipt",
    "VoteStatus",
    "admit_vote",
    "create_candidate",
    "create_election",
    "delete_candidate",
    "delete_election",
    "determine_winners",
    "election_has_votes",
    "has_voted",
    "reconcile_tally",
    "results",
    "update_candidate",
    "update_election",
]
