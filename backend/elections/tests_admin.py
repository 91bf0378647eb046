from datetime import timedelta

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import RequestFactory, TestCase
from django.utils import timezone

from elections.models import Candidate, Election, Vote
from elections.services import admit_vote, results


class ElectionAdminWithVotesTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.superuser = user_model.objects.create_superuser(
            username="root_admin_site",
            password="pass1234",
            role=user_model.ROLE_SUPERADMIN,
        )
        voter = user_model.objects.create_user(username="voter_admin_site", password="pass1234")
        now = timezone.now().replace(microsecond=0)
        self.election = Election.objects.create(
            title="Consulta Vecinal",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.superuser,
        )
        self.other = Election.objects.create(
            title="Otra Consulta",
            description="Elección de prueba.",
            opens_at=now - timedelta(hours=1),
            closes_at=now + timedelta(hours=1),
            created_by=self.superuser,
        )
        self.candidate = Candidate.objects.create(election=self.election, name="Olga Ríos")
        admit_vote(voter_id=voter.id, election_id=self.election.id, candidate_id=self.candidate.id)
        self.original_closes_at = self.election.closes_at
        self.client.force_login(self.superuser)

    def _request(self):
        request = RequestFactory().get("/admin/")
        request.user = self.superuser
        return request

    def test_window_is_read_only_once_votes_exist(self):
        election_admin = admin.site._registry[Election]

        self.assertEqual(election_admin.get_readonly_fields(self._request(), self.election), ("opens_at", "closes_at"))
        self.assertEqual(election_admin.get_readonly_fields(self._request(), self.other), ())

    def test_change_form_does_not_move_window(self):
        response = self.client.post(
            f"/admin/elections/election/{self.election.id}/change/",
            {
                "title": "Consulta Vecinal 2026",
                "description": "Elección de prueba.",
                "enabled": "on",
                "created_by": self.superuser.id,
                "closes_at_0": (self.original_closes_at + timedelta(days=3)).date().isoformat(),
                "closes_at_1": "10:00:00",
                "candidates-TOTAL_FORMS": "1",
                "candidates-INITIAL_FORMS": "1",
                "candidates-MIN_NUM_FORMS": "0",
                "candidates-MAX_NUM_FORMS": "1000",
                "candidates-0-id": self.candidate.id,
                "candidates-0-election": self.election.id,
                "candidates-0-name": "Olga Ríos",
                "candidates-0-party": Candidate.PARTY_INDEPENDENT,
                "candidates-0-photo": "",
            },
        )

        self.assertEqual(response.status_code, 302)
        self.election.refresh_from_db()
        self.assertEqual(self.election.title, "Consulta Vecinal 2026")
        self.assertEqual(self.election.closes_at, self.original_closes_at)

    def test_model_rejects_window_change_with_votes(self):
        self.election.closes_at = self.original_closes_at + timedelta(days=3)

        with self.assertRaises(ValidationError):
            self.election.save()

        self.election.refresh_from_db()
        self.assertEqual(self.election.closes_at, self.original_closes_at)

    def test_candidate_change_form_keeps_election(self):
        response = self.client.post(
            f"/admin/elections/candidate/{self.candidate.id}/change/",
            {
                "election": self.other.id,
                "name": "Olga Ríos",
                "party": "Frente Cívico",
                "description": "",
                "photo": "",
            },
        )

        self.assertEqual(response.status_code, 302)
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.election_id, self.election.id)
        self.assertEqual(self.candidate.party, "Frente Cívico")
        tally = results(self.election.id)
        self.assertEqual(tally.total_votes, sum(item.votes for item in tally.candidates))

    def test_model_rejects_moving_voted_candidate(self):
        self.candidate.election = self.other

        with self.assertRaises(ValidationError):
            self.candidate.save()

        self.assertEqual(Vote.objects.get().candidate.election_id, self.election.id)
