from datetime import timedelta
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from audit.models import AuditLog
from elections.clock import LifecycleState
from elections.models import Candidate, Election
from elections.services import admit_vote


class ReconcileTallyCommandTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_reconcile_cmd",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        voter = user_model.objects.create_user(username="voter_reconcile_cmd", password="pass1234")
        now = timezone.now()
        self.election = Election.objects.create(
            title="Cabildo Abierto",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.admin,
        )
        self.candidate = Candidate.objects.create(election=self.election, name="Elisa Núñez")
        admit_vote(voter_id=voter.id, election_id=self.election.id, candidate_id=self.candidate.id)
        Candidate.objects.filter(id=self.candidate.id).update(vote_count=3)

    def test_reconcile_single_election(self):
        out = StringIO()
        call_command("reconcile_tally", election=self.election.id, stdout=out)

        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.vote_count, 1)
        self.assertIn("3 -> 1", out.getvalue())
        log = AuditLog.objects.get(event_type="ELECTION_TALLY_RECONCILED")
        self.assertEqual(log.metadata["trigger"], "command")

    def test_dry_run_does_not_write(self):
        call_command("reconcile_tally", "--all", "--dry-run", stdout=StringIO())

        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.vote_count, 3)
        self.assertFalse(AuditLog.objects.exists())

    def test_unknown_election(self):
        with self.assertRaises(CommandError):
            call_command("reconcile_tally", election=999999, stdout=StringIO())


class SeedElectionDemoCommandTests(TestCase):
    def test_creates_open_election_with_candidates(self):
        user_model = get_user_model()
        admin = user_model.objects.create_user(
            username="admin_seed_cmd",
            password="pass1234",
            role=user_model.ROLE_SUPERADMIN,
        )

        call_command("seed_election_demo", title="Demo Barrial", hours=3, candidates=2, stdout=StringIO())

        election = Election.objects.get(title="Demo Barrial")
        self.assertEqual(election.created_by, admin)
        self.assertEqual(election.lifecycle_state(), LifecycleState.OPEN)
        self.assertEqual(election.candidates.count(), 2)

    def test_requires_an_admin(self):
        with self.assertRaises(CommandError):
            call_command("seed_election_demo", stdout=StringIO())
