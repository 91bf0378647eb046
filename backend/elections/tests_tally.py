from datetime import timedelta
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone

from audit.models import AuditLog
from elections.clock import LifecycleState
from elections.exceptions import NotFound
from elections.models import Candidate, Election, Vote
from elections.services import admit_vote, determine_winners, reconcile_tally, results
from elections.tasks import reconcile_election_tally


class TallyFixtureMixin:
    def _setup_election(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_tally",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        now = timezone.now()
        self.election = Election.objects.create(
            title="Asamblea Vecinal",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.admin,
        )
        self.c1 = Candidate.objects.create(election=self.election, name="Carla Medina")
        self.c2 = Candidate.objects.create(election=self.election, name="Bruno Ortiz")
        self.c3 = Candidate.objects.create(election=self.election, name="Alba Reyes")
        self._voter_seq = 0

    def _cast(self, candidate, count=1):
        user_model = get_user_model()
        for _ in range(count):
            self._voter_seq += 1
            voter = user_model.objects.create_user(username=f"voter_tally_{self._voter_seq}", password="pass1234")
            admit_vote(voter_id=voter.id, election_id=self.election.id, candidate_id=candidate.id)

    def _close_election(self):
        now = timezone.now()
        Election.objects.filter(id=self.election.id).update(
            opens_at=now - timedelta(hours=3),
            closes_at=now - timedelta(hours=1),
        )


class ResultsTests(TallyFixtureMixin, TestCase):
    def setUp(self):
        cache.clear()
        self._setup_election()

    def test_tied_candidates_keep_creation_order(self):
        self._cast(self.c3, 1)
        self._cast(self.c2, 3)
        self._cast(self.c1, 3)

        tally = results(self.election.id)

        self.assertEqual(tally.total_votes, 7)
        self.assertEqual(
            [(item.candidate_id, item.votes) for item in tally.candidates],
            [(self.c1.id, 3), (self.c2.id, 3), (self.c3.id, 1)],
        )
        self.assertEqual(tally.drifted_candidate_ids, [])

    def test_total_matches_vote_log(self):
        self._cast(self.c1, 2)
        self._cast(self.c3, 1)

        tally = results(self.election.id)

        self.assertEqual(tally.total_votes, Vote.objects.filter(election=self.election).count())
        self.assertEqual(sum(item.votes for item in tally.candidates), tally.total_votes)

    def test_candidates_without_votes_are_listed_with_zero(self):
        tally = results(self.election.id)
        self.assertEqual(tally.total_votes, 0)
        self.assertEqual([item.votes for item in tally.candidates], [0, 0, 0])

    def test_unknown_election(self):
        with self.assertRaises(NotFound):
            results(999999)

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=True)
    def test_drift_is_reported_and_reconcile_is_scheduled(self):
        self._cast(self.c1, 2)
        Candidate.objects.filter(id=self.c1.id).update(vote_count=5)

        with patch("elections.tasks.reconcile_election_tally.delay") as delay_mock:
            with self.captureOnCommitCallbacks(execute=True):
                tally = results(self.election.id)

        self.assertEqual(tally.drifted_candidate_ids, [self.c1.id])
        self.assertEqual(tally.candidates[0].votes, 2)
        delay_mock.assert_called_once_with(self.election.id)

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=False)
    def test_drift_without_auto_reconcile_does_not_schedule(self):
        Candidate.objects.filter(id=self.c2.id).update(vote_count=1)

        with patch("elections.tasks.reconcile_election_tally.delay") as delay_mock:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                tally = results(self.election.id)

        self.assertEqual(tally.drifted_candidate_ids, [self.c2.id])
        self.assertEqual(len(callbacks), 0)
        delay_mock.assert_not_called()

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=True)
    def test_enqueue_failure_does_not_break_results(self):
        Candidate.objects.filter(id=self.c2.id).update(vote_count=4)

        with patch("elections.tasks.reconcile_election_tally.delay", side_effect=RuntimeError("broker down")):
            with self.captureOnCommitCallbacks(execute=True):
                tally = results(self.election.id)

        self.assertEqual(tally.drifted_candidate_ids, [self.c2.id])

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=True)
    def test_repeated_drift_reads_schedule_one_reconcile(self):
        Candidate.objects.filter(id=self.c1.id).update(vote_count=2)

        with patch("elections.tasks.reconcile_election_tally.delay") as delay_mock:
            with self.captureOnCommitCallbacks(execute=True):
                for _ in range(5):
                    self.assertEqual(results(self.election.id).drifted_candidate_ids, [self.c1.id])

        delay_mock.assert_called_once_with(self.election.id)

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=True)
    def test_reconcile_allows_the_next_drift_to_schedule_again(self):
        Candidate.objects.filter(id=self.c1.id).update(vote_count=2)

        with patch("elections.tasks.reconcile_election_tally.delay") as delay_mock:
            with self.captureOnCommitCallbacks(execute=True):
                results(self.election.id)
            reconcile_tally(self.election.id)
            Candidate.objects.filter(id=self.c2.id).update(vote_count=3)
            with self.captureOnCommitCallbacks(execute=True):
                results(self.election.id)

        self.assertEqual(delay_mock.call_count, 2)

    @override_settings(ELECTIONS_AUTO_RECONCILE_ON_DRIFT=True)
    def test_enqueue_failure_releases_guard(self):
        Candidate.objects.filter(id=self.c2.id).update(vote_count=4)

        with patch("elections.tasks.reconcile_election_tally.delay", side_effect=[RuntimeError("broker down"), None]) as delay_mock:
            with self.captureOnCommitCallbacks(execute=True):
                results(self.election.id)
            with self.captureOnCommitCallbacks(execute=True):
                results(self.election.id)

        self.assertEqual(delay_mock.call_count, 2)


class ReconcileTallyTests(TallyFixtureMixin, TestCase):
    def setUp(self):
        cache.clear()
        self._setup_election()

    def test_rewrites_drifted_counters_from_vote_log(self):
        self._cast(self.c1, 3)
        self._cast(self.c2, 1)
        Candidate.objects.filter(id=self.c1.id).update(vote_count=1)
        Candidate.objects.filter(id=self.c3.id).update(vote_count=4)

        report = reconcile_tally(self.election.id)

        self.assertTrue(report.changed)
        self.assertEqual(report.total_votes, 4)
        self.assertEqual(report.candidates_checked, 3)
        self.assertEqual(
            {(c.candidate_id, c.previous, c.derived) for c in report.corrections},
            {(self.c1.id, 1, 3), (self.c3.id, 4, 0)},
        )
        counters = dict(Candidate.objects.filter(election=self.election).values_list("id", "vote_count"))
        self.assertEqual(counters, {self.c1.id: 3, self.c2.id: 1, self.c3.id: 0})
        self.assertEqual(Vote.objects.filter(election=self.election).count(), 4)

    def test_dry_run_reports_without_writing(self):
        self._cast(self.c1, 2)
        Candidate.objects.filter(id=self.c1.id).update(vote_count=0)

        report = reconcile_tally(self.election.id, dry_run=True)

        self.assertTrue(report.dry_run)
        self.assertEqual([(c.previous, c.derived) for c in report.corrections], [(0, 2)])
        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 0)

    def test_consistent_counters_need_no_corrections(self):
        self._cast(self.c2, 2)
        report = reconcile_tally(self.election.id)
        self.assertFalse(report.changed)
        self.assertEqual(report.as_dict()["corrections"], [])

    def test_unknown_election(self):
        with self.assertRaises(NotFound):
            reconcile_tally(999999)

    def test_task_reconciles_and_writes_system_audit_event(self):
        self._cast(self.c1, 1)
        Candidate.objects.filter(id=self.c1.id).update(vote_count=7)

        payload = reconcile_election_tally.apply(args=[self.election.id]).get()

        self.assertEqual(payload["corrections"], [{"candidate_id": self.c1.id, "previous": 7, "derived": 1}])
        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 1)
        log = AuditLog.objects.get(event_type="ELECTION_TALLY_RECONCILED")
        self.assertIsNone(log.actor)
        self.assertEqual(log.object_id, str(self.election.id))
        self.assertEqual(log.metadata["trigger"], "task")

    def test_task_skips_missing_election(self):
        self.assertIsNone(reconcile_election_tally.apply(args=[999999]).get())
        self.assertFalse(AuditLog.objects.exists())


class DetermineWinnersTests(TallyFixtureMixin, TestCase):
    def setUp(self):
        self._setup_election()

    def test_no_winners_while_open(self):
        self._cast(self.c1, 2)
        tally = results(self.election.id)
        self.assertEqual(determine_winners(tally, LifecycleState.OPEN), [])

    def test_no_winners_without_votes(self):
        self._close_election()
        tally = results(self.election.id)
        self.assertEqual(determine_winners(tally, LifecycleState.CLOSED), [])

    def test_single_winner_when_closed(self):
        self._cast(self.c2, 2)
        self._cast(self.c1, 1)
        self._close_election()

        winners = determine_winners(results(self.election.id), LifecycleState.CLOSED)
        self.assertEqual([item.candidate_id for item in winners], [self.c2.id])

    def test_tie_reports_every_top_candidate(self):
        self._cast(self.c1, 2)
        self._cast(self.c3, 2)
        self._cast(self.c2, 1)
        self._close_election()

        winners = determine_winners(results(self.election.id), LifecycleState.CLOSED)
        self.assertEqual([item.candidate_id for item in winners], [self.c1.id, self.c3.id])
