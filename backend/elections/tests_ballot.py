from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from elections.clock import LifecycleState
from elections.exceptions import AlreadyVoted, NotFound, NotOpen
from elections.models import Candidate, Election, Vote
from elections.services import admit_vote, has_voted


class AdmitVoteTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_ballot",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        self.voter = user_model.objects.create_user(
            username="voter_ballot",
            password="pass1234",
            role=user_model.ROLE_VOTER,
        )
        self.t0 = timezone.now().replace(microsecond=0)
        self.election = Election.objects.create(
            title="Consejo Comunal",
            description="Elección de prueba.",
            opens_at=self.t0,
            closes_at=self.t0 + timedelta(hours=1),
            created_by=self.admin,
        )
        self.c1 = Candidate.objects.create(election=self.election, name="Ana Gómez")
        self.c2 = Candidate.objects.create(election=self.election, name="Luis Pardo")

    def _vote(self, candidate, *, voter=None, now=None, election=None):
        return admit_vote(
            voter_id=(voter or self.voter).id,
            election_id=(election or self.election).id,
            candidate_id=candidate.id,
            now=now or self.t0 + timedelta(minutes=30),
        )

    def test_window_gates_admission(self):
        with self.assertRaises(NotOpen) as ctx:
            self._vote(self.c1, now=self.t0 - timedelta(seconds=1))
        self.assertEqual(ctx.exception.state, LifecycleState.UPCOMING)

        receipt = self._vote(self.c1, now=self.t0 + timedelta(minutes=30))
        self.assertEqual(receipt.candidate_id, self.c1.id)

        other = get_user_model().objects.create_user(username="late_voter", password="pass1234")
        with self.assertRaises(NotOpen) as ctx:
            self._vote(self.c1, voter=other, now=self.t0 + timedelta(hours=1, seconds=1))
        self.assertEqual(ctx.exception.state, LifecycleState.CLOSED)

        self.assertEqual(Vote.objects.filter(election=self.election).count(), 1)

    def test_disabled_election_is_rejected_as_inactive(self):
        Election.objects.filter(id=self.election.id).update(enabled=False)
        with self.assertRaises(NotOpen) as ctx:
            self._vote(self.c1)
        self.assertEqual(ctx.exception.state, LifecycleState.INACTIVE)
        self.assertEqual(ctx.exception.as_payload()["state"], "INACTIVE")

    def test_success_inserts_vote_and_increments_counter(self):
        receipt = self._vote(self.c1)

        vote = Vote.objects.get(id=receipt.vote_id)
        self.assertEqual(vote.voter_id, self.voter.id)
        self.assertEqual(vote.candidate_id, self.c1.id)
        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 1)
        self.assertTrue(receipt.receipt_code.startswith(f"VOTO-{receipt.cast_at.year}-"))

    def test_second_vote_for_other_candidate_is_already_voted(self):
        self._vote(self.c1)

        with self.assertRaises(AlreadyVoted):
            self._vote(self.c2)

        self.c2.refresh_from_db()
        self.assertEqual(self.c2.vote_count, 0)
        self.assertEqual(Vote.objects.filter(voter=self.voter, election=self.election).count(), 1)

    def test_resubmission_is_deterministically_rejected(self):
        self._vote(self.c1)
        for _ in range(3):
            with self.assertRaises(AlreadyVoted):
                self._vote(self.c1)

        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 1)
        self.assertEqual(Vote.objects.filter(election=self.election).count(), 1)

    def test_unknown_election(self):
        with self.assertRaises(NotFound) as ctx:
            admit_vote(voter_id=self.voter.id, election_id=999999, candidate_id=self.c1.id)
        self.assertEqual(ctx.exception.kind, NotFound.KIND_ELECTION)

    def test_candidate_from_another_election_is_not_found(self):
        other = Election.objects.create(
            title="Otra elección",
            description="Otra.",
            opens_at=self.t0,
            closes_at=self.t0 + timedelta(hours=1),
            created_by=self.admin,
        )
        foreign = Candidate.objects.create(election=other, name="Marta Ruiz")

        with self.assertRaises(NotFound) as ctx:
            self._vote(foreign)
        self.assertEqual(ctx.exception.kind, NotFound.KIND_CANDIDATE)
        self.assertFalse(Vote.objects.exists())

    def test_window_is_checked_before_candidate(self):
        with self.assertRaises(NotOpen):
            admit_vote(
                voter_id=self.voter.id,
                election_id=self.election.id,
                candidate_id=999999,
                now=self.t0 - timedelta(minutes=1),
            )

    def test_lost_race_surfaces_as_already_voted(self):
        self._vote(self.c1)

        # A concurrent request that passed the pre-check before the first insert committed.
        with patch("elections.services.ballot._existing_vote", side_effect=[None, Vote.objects.get()]):
            with self.assertRaises(AlreadyVoted):
                self._vote(self.c2)

        self.c1.refresh_from_db()
        self.c2.refresh_from_db()
        self.assertEqual((self.c1.vote_count, self.c2.vote_count), (1, 0))
        self.assertEqual(Vote.objects.filter(voter=self.voter, election=self.election).count(), 1)

    def test_failed_increment_rolls_back_vote_insert(self):
        with patch("elections.services.ballot.F", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                self._vote(self.c1)

        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 0)
        self.assertFalse(Vote.objects.exists())

    def test_votes_in_different_elections_are_independent(self):
        other = Election.objects.create(
            title="Segunda vuelta",
            description="Otra.",
            opens_at=self.t0,
            closes_at=self.t0 + timedelta(hours=1),
            created_by=self.admin,
        )
        other_candidate = Candidate.objects.create(election=other, name="Ana Gómez")

        self._vote(self.c1)
        self._vote(other_candidate, election=other)

        self.assertEqual(Vote.objects.filter(voter=self.voter).count(), 2)


class HasVotedTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_has_voted",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        self.voter = user_model.objects.create_user(username="voter_has_voted", password="pass1234")
        now = timezone.now()
        self.election = Election.objects.create(
            title="Junta Directiva",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.admin,
        )
        self.candidate = Candidate.objects.create(election=self.election, name="Pedro Salas")

    def test_reports_no_vote(self):
        status = has_voted(voter_id=self.voter.id, election_id=self.election.id)
        self.assertFalse(status.has_voted)
        self.assertIsNone(status.candidate_id)
        self.assertIsNone(status.cast_at)

    def test_reports_cast_vote(self):
        receipt = admit_vote(voter_id=self.voter.id, election_id=self.election.id, candidate_id=self.candidate.id)

        status = has_voted(voter_id=self.voter.id, election_id=self.election.id)
        self.assertTrue(status.has_voted)
        self.assertEqual(status.candidate_id, self.candidate.id)
        self.assertEqual(status.candidate_name, "Pedro Salas")
        self.assertEqual(status.cast_at, receipt.cast_at)
