import threading
import unittest
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TransactionTestCase
from django.utils import timezone

from elections.exceptions import AlreadyVoted
from elections.models import Candidate, Election, Vote
from elections.services import admit_vote, reconcile_tally, results


@unittest.skipUnless(connection.vendor == "postgresql", "Requiere PostgreSQL para escrituras concurrentes reales.")
class ConcurrentAdmissionTests(TransactionTestCase):
    attempts = 8

    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_concurrency",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        now = timezone.now()
        self.election = Election.objects.create(
            title="Elección Concurrente",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.admin,
        )
        self.candidates = [
            Candidate.objects.create(election=self.election, name="Primera Opción"),
            Candidate.objects.create(election=self.election, name="Segunda Opción"),
        ]

    def _run_concurrently(self, submissions):
        barrier = threading.Barrier(len(submissions))
        outcomes = []
        lock = threading.Lock()

        def worker(voter_id, candidate_id):
            try:
                barrier.wait()
                admit_vote(voter_id=voter_id, election_id=self.election.id, candidate_id=candidate_id)
                outcome = "admitted"
            except AlreadyVoted:
                outcome = "already_voted"
            except Exception as exc:
                outcome = repr(exc)
            finally:
                connection.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker, args=args) for args in submissions]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_same_voter_racing_gets_exactly_one_vote(self):
        voter = get_user_model().objects.create_user(username="voter_concurrency", password="pass1234")
        submissions = [(voter.id, self.candidates[i % 2].id) for i in range(self.attempts)]

        outcomes = self._run_concurrently(submissions)

        self.assertEqual(sorted(outcomes), ["admitted"] + ["already_voted"] * (self.attempts - 1))
        self.assertEqual(Vote.objects.filter(voter=voter, election=self.election).count(), 1)
        self.assertFalse(reconcile_tally(self.election.id).changed)

    def test_distinct_voters_racing_keep_counters_exact(self):
        user_model = get_user_model()
        voters = [user_model.objects.create_user(username=f"voter_conc_{i}", password="pass1234") for i in range(self.attempts)]
        submissions = [(voter.id, self.candidates[0].id) for voter in voters]

        outcomes = self._run_concurrently(submissions)

        self.assertEqual(outcomes, ["admitted"] * self.attempts)
        tally = results(self.election.id)
        self.assertEqual(tally.total_votes, self.attempts)
        self.assertEqual(tally.drifted_candidate_ids, [])
