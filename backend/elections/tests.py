import csv
from datetime import timedelta
from io import BytesIO, StringIO

from audit.models import AuditLog
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import override_settings
from django.utils import timezone
from openpyxl import load_workbook
from rest_framework.test import APITestCase

from elections.models import Candidate, Election, Vote


class ElectionApiFixtureMixin:
    def _setup_users(self, suffix: str):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username=f"admin_{suffix}",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        self.voter = user_model.objects.create_user(
            username=f"voter_{suffix}",
            password="pass1234",
            role=user_model.ROLE_VOTER,
        )

    def _create_election(self, title="Elección Comunal", *, opens_delta=-1, closes_delta=2, enabled=True):
        now = timezone.now()
        return Election.objects.create(
            title=title,
            description="Elección de prueba.",
            opens_at=now + timedelta(hours=opens_delta),
            closes_at=now + timedelta(hours=closes_delta),
            enabled=enabled,
            created_by=self.admin,
        )

    def _new_voter(self, username):
        return get_user_model().objects.create_user(username=username, password="pass1234")

    def _vote_as(self, user, election, candidate):
        self.client.force_authenticate(user=user)
        return self.client.post(
            f"/api/elections/{election.id}/vote/",
            {"candidate_id": candidate.id},
            format="json",
        )


class ElectionVotingFlowTests(ElectionApiFixtureMixin, APITestCase):
    def setUp(self):
        cache.clear()
        self._setup_users("voting_flow")
        self.election = self._create_election()
        self.c1 = Candidate.objects.create(election=self.election, name="Zoe Castro", party="Unión Barrial")
        self.c2 = Candidate.objects.create(election=self.election, name="Andrés Mora")

    def test_list_shows_enabled_elections_with_state(self):
        self._create_election("Deshabilitada", enabled=False)
        upcoming = self._create_election("Futura", opens_delta=5, closes_delta=6)

        self.client.force_authenticate(user=self.voter)
        response = self.client.get("/api/elections/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.data["results"]], [upcoming.id, self.election.id])
        states = {item["id"]: item["state"] for item in response.data["results"]}
        self.assertEqual(states, {upcoming.id: "UPCOMING", self.election.id: "OPEN"})
        self.assertEqual(response.data["results"][1]["candidates_count"], 2)

    def test_detail_lists_candidates_by_name(self):
        self.client.force_authenticate(user=self.voter)
        response = self.client.get(f"/api/elections/{self.election.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["name"] for c in response.data["candidates"]], ["Andrés Mora", "Zoe Castro"])
        self.assertEqual(response.data["candidates"][0]["party"], Candidate.PARTY_INDEPENDENT)

    def test_disabled_election_is_hidden_from_voters(self):
        hidden = self._create_election("Oculta", enabled=False)

        self.client.force_authenticate(user=self.voter)
        self.assertEqual(self.client.get(f"/api/elections/{hidden.id}/").status_code, 404)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get(f"/api/elections/{hidden.id}/").status_code, 200)

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.post(f"/api/elections/{self.election.id}/vote/", {"candidate_id": self.c1.id}, format="json")
        self.assertEqual(response.status_code, 401)

    def test_submit_vote_and_check(self):
        response = self._vote_as(self.voter, self.election, self.c1)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["candidate_id"], self.c1.id)
        self.assertTrue(response.data["receipt_code"].startswith("VOTO-"))
        self.c1.refresh_from_db()
        self.assertEqual(self.c1.vote_count, 1)

        check = self.client.get(f"/api/elections/{self.election.id}/check-vote/")
        self.assertEqual(check.status_code, 200)
        self.assertTrue(check.data["has_voted"])
        self.assertEqual(check.data["vote"]["candidate_id"], self.c1.id)
        self.assertEqual(check.data["vote"]["candidate_name"], "Zoe Castro")

    def test_check_vote_before_voting(self):
        self.client.force_authenticate(user=self.voter)
        response = self.client.get(f"/api/elections/{self.election.id}/check-vote/")
        self.assertEqual(response.data, {"has_voted": False, "vote": None})

    def test_second_vote_is_conflict(self):
        self._vote_as(self.voter, self.election, self.c1)
        response = self._vote_as(self.voter, self.election, self.c2)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "already_voted")
        self.c2.refresh_from_db()
        self.assertEqual(self.c2.vote_count, 0)
        self.assertEqual(Vote.objects.filter(voter=self.voter).count(), 1)

    def test_closed_election_rejects_vote(self):
        closed = self._create_election("Cerrada", opens_delta=-5, closes_delta=-1)
        candidate = Candidate.objects.create(election=closed, name="Irene Solís")

        response = self._vote_as(self.voter, closed, candidate)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "not_open")
        self.assertEqual(response.data["state"], "CLOSED")

    def test_unknown_candidate_and_election(self):
        foreign = Candidate.objects.create(election=self._create_election("Ajena"), name="Otro Nombre")

        response = self._vote_as(self.voter, self.election, foreign)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["kind"], "candidate")

        response = self.client.post("/api/elections/999999/vote/", {"candidate_id": self.c1.id}, format="json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["kind"], "election")

    def test_invalid_payload(self):
        self.client.force_authenticate(user=self.voter)
        response = self.client.post(f"/api/elections/{self.election.id}/vote/", {}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_vote_audit_trail_omits_candidate(self):
        self._vote_as(self.voter, self.election, self.c1)
        self._vote_as(self.voter, self.election, self.c2)

        submit = AuditLog.objects.get(event_type="ELECTION_VOTE_SUBMIT")
        self.assertEqual(submit.actor, self.voter)
        self.assertEqual(submit.object_id, str(self.election.id))
        self.assertEqual(submit.status_code, 201)
        self.assertNotIn("candidate_id", submit.metadata)

        duplicate = AuditLog.objects.get(event_type="ELECTION_VOTE_SUBMIT_DUPLICATE")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.metadata, {"code": "already_voted"})

    def test_rejected_vote_is_audited(self):
        upcoming = self._create_election("Próxima", opens_delta=3, closes_delta=4)
        candidate = Candidate.objects.create(election=upcoming, name="Elena Paz")

        self._vote_as(self.voter, upcoming, candidate)

        log = AuditLog.objects.get(event_type="ELECTION_VOTE_REJECTED")
        self.assertEqual(log.metadata, {"code": "not_open", "state": "UPCOMING"})

    @override_settings(VOTE_SUBMIT_THROTTLE_RATE="2/min")
    def test_vote_submission_is_throttled(self):
        statuses = [self._vote_as(self.voter, self.election, self.c1).status_code for _ in range(3)]
        self.assertEqual(statuses, [201, 409, 429])


class ElectionResultsApiTests(ElectionApiFixtureMixin, APITestCase):
    def setUp(self):
        cache.clear()
        self._setup_users("results_api")
        self.election = self._create_election()
        self.c1 = Candidate.objects.create(election=self.election, name="Rosa Vidal")
        self.c2 = Candidate.objects.create(election=self.election, name="Tomás Gil")
        self.c3 = Candidate.objects.create(election=self.election, name="Nora Díaz")

    def _cast_many(self, candidate, count, prefix):
        for index in range(count):
            self._vote_as(self._new_voter(f"{prefix}_{index}"), self.election, candidate)

    def _close(self):
        now = timezone.now()
        Election.objects.filter(id=self.election.id).update(
            opens_at=now - timedelta(hours=4),
            closes_at=now - timedelta(minutes=1),
        )

    def test_live_results_have_no_winners(self):
        self._cast_many(self.c2, 2, "live")

        self.client.force_authenticate(user=self.voter)
        response = self.client.get(f"/api/elections/{self.election.id}/results/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["total_votes"], 2)
        self.assertEqual(response.data["election"]["state"], "OPEN")
        self.assertEqual(response.data["candidates"][0]["candidate_id"], self.c2.id)
        self.assertEqual(response.data["candidates"][0]["percentage"], 100.0)
        self.assertEqual(response.data["winners"], [])
        self.assertFalse(response.data["has_voted"])
        self.assertIsNone(response.data["user_vote"])

    def test_closed_results_report_tie(self):
        self._cast_many(self.c1, 3, "tie_a")
        self._cast_many(self.c2, 3, "tie_b")
        self._cast_many(self.c3, 1, "tie_c")
        self._vote_as(self.voter, self.election, self.c3)
        self._close()

        self.client.force_authenticate(user=self.voter)
        response = self.client.get(f"/api/elections/{self.election.id}/results/")

        self.assertEqual(response.data["total_votes"], 8)
        self.assertEqual(response.data["election"]["state"], "CLOSED")
        self.assertEqual([c["candidate_id"] for c in response.data["candidates"]], [self.c1.id, self.c2.id, self.c3.id])
        self.assertEqual(response.data["winners"], [self.c1.id, self.c2.id])
        self.assertTrue(response.data["is_tie"])
        self.assertTrue(response.data["has_voted"])
        self.assertEqual(response.data["user_vote"]["candidate_id"], self.c3.id)

    def test_unknown_election_results(self):
        self.client.force_authenticate(user=self.voter)
        response = self.client.get("/api/elections/999999/results/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")


class ElectionManagementApiTests(ElectionApiFixtureMixin, APITestCase):
    def setUp(self):
        cache.clear()
        self._setup_users("manage_api")
        self.client.force_authenticate(user=self.admin)

    def test_voter_cannot_manage(self):
        self.client.force_authenticate(user=self.voter)
        response = self.client.get("/api/elections/manage/elections/")
        self.assertEqual(response.status_code, 403)

    def test_create_election_and_candidates(self):
        now = timezone.now()
        response = self.client.post(
            "/api/elections/manage/elections/",
            {
                "title": "Junta de Acción Comunal",
                "description": "Elección anual.",
                "opens_at": (now + timedelta(hours=1)).isoformat(),
                "closes_at": (now + timedelta(hours=5)).isoformat(),
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        election_id = response.data["id"]
        self.assertEqual(response.data["votes_count"], 0)
        self.assertTrue(response.data["can_delete"])
        self.assertTrue(AuditLog.objects.filter(event_type="ELECTION_CREATE", object_id=str(election_id)).exists())

        response = self.client.post(
            f"/api/elections/manage/elections/{election_id}/candidates/",
            {"name": "Gloria Peña", "description": "Propuesta."},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["party"], Candidate.PARTY_INDEPENDENT)

        duplicate = self.client.post(
            f"/api/elections/manage/elections/{election_id}/candidates/",
            {"name": "Gloria Peña"},
            format="json",
        )
        self.assertEqual(duplicate.status_code, 400)

        listing = self.client.get(f"/api/elections/manage/elections/{election_id}/candidates/")
        self.assertEqual(listing.data["count"], 1)

    def test_create_election_validates_input(self):
        now = timezone.now()
        response = self.client.post(
            "/api/elections/manage/elections/",
            {
                "title": "ab",
                "description": "x",
                "opens_at": now.isoformat(),
                "closes_at": (now - timedelta(hours=1)).isoformat(),
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("title", response.data)

        response = self.client.post(
            "/api/elections/manage/elections/",
            {
                "title": "Ventana invertida",
                "description": "x",
                "opens_at": now.isoformat(),
                "closes_at": (now - timedelta(hours=1)).isoformat(),
            },
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("closes_at", response.data)

    def test_candidate_for_unknown_election(self):
        response = self.client.post(
            "/api/elections/manage/elections/999999/candidates/",
            {"name": "Sin Elección"},
            format="json",
        )
        self.assertEqual(response.status_code, 404)

    def test_list_filters_by_enabled(self):
        self._create_election("Activa")
        disabled = self._create_election("Inactiva", enabled=False)

        response = self.client.get("/api/elections/manage/elections/", {"enabled": "false"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.data["results"]], [disabled.id])
        self.assertEqual(response.data["results"][0]["state"], "INACTIVE")

    def test_dates_frozen_once_votes_exist(self):
        election = self._create_election()
        candidate = Candidate.objects.create(election=election, name="Félix Ramos")
        self._vote_as(self.voter, election, candidate)

        self.client.force_authenticate(user=self.admin)
        response = self.client.patch(
            f"/api/elections/manage/elections/{election.id}/",
            {"closes_at": (timezone.now() + timedelta(days=2)).isoformat()},
            format="json",
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "conflict")

        response = self.client.patch(
            f"/api/elections/manage/elections/{election.id}/",
            {"title": "Título actualizado"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["title"], "Título actualizado")
        self.assertEqual(response.data["votes_count"], 1)
        self.assertFalse(response.data["can_delete"])

    def test_delete_rules(self):
        election = self._create_election()
        candidate = Candidate.objects.create(election=election, name="Lucía Prado")
        spare = Candidate.objects.create(election=election, name="Mateo Cruz")
        self._vote_as(self.voter, election, candidate)
        self.client.force_authenticate(user=self.admin)

        self.assertEqual(self.client.delete(f"/api/elections/manage/candidates/{candidate.id}/").status_code, 409)
        self.assertEqual(self.client.delete(f"/api/elections/manage/elections/{election.id}/").status_code, 409)
        self.assertEqual(self.client.delete(f"/api/elections/manage/candidates/{spare.id}/").status_code, 204)

        candidate.refresh_from_db()
        self.assertEqual(candidate.vote_count, 1)
        self.assertTrue(AuditLog.objects.filter(event_type="ELECTION_CANDIDATE_DELETE_REJECTED").exists())

        empty = self._create_election("Vacía")
        self.assertEqual(self.client.delete(f"/api/elections/manage/elections/{empty.id}/").status_code, 204)
        self.assertFalse(Election.objects.filter(id=empty.id).exists())

    def test_update_candidate(self):
        election = self._create_election()
        candidate = Candidate.objects.create(election=election, name="Julia Vega")

        response = self.client.patch(
            f"/api/elections/manage/candidates/{candidate.id}/",
            {"party": "Renovación", "photo": "https://example.org/julia.jpg"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["party"], "Renovación")
        self.assertEqual(response.data["name"], "Julia Vega")

    def test_reconcile_endpoint(self):
        election = self._create_election()
        candidate = Candidate.objects.create(election=election, name="Raúl Soto")
        self._vote_as(self.voter, election, candidate)
        Candidate.objects.filter(id=candidate.id).update(vote_count=9)
        self.client.force_authenticate(user=self.admin)

        dry = self.client.post(f"/api/elections/manage/elections/{election.id}/reconcile/", {"dry_run": True}, format="json")
        self.assertEqual(dry.status_code, 200)
        self.assertTrue(dry.data["dry_run"])
        candidate.refresh_from_db()
        self.assertEqual(candidate.vote_count, 9)

        response = self.client.post(f"/api/elections/manage/elections/{election.id}/reconcile/", {}, format="json")
        self.assertEqual(response.data["corrections"], [{"candidate_id": candidate.id, "previous": 9, "derived": 1}])
        candidate.refresh_from_db()
        self.assertEqual(candidate.vote_count, 1)

        missing = self.client.post("/api/elections/manage/elections/999999/reconcile/", {}, format="json")
        self.assertEqual(missing.status_code, 404)

    def test_results_exports(self):
        election = self._create_election("Exportación")
        candidate = Candidate.objects.create(election=election, name="Diana Mejía")
        Candidate.objects.create(election=election, name="Hugo León")
        self._vote_as(self.voter, election, candidate)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(f"/api/elections/manage/elections/{election.id}/results-export.csv")
        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment;", response["Content-Disposition"])
        rows = list(csv.reader(StringIO(response.content.decode("utf-8"))))
        self.assertEqual(rows[4], ["total_votos", "1"])
        self.assertEqual(rows[7][:4], ["1", "Diana Mejía", Candidate.PARTY_INDEPENDENT, "1"])

        response = self.client.get(f"/api/elections/manage/elections/{election.id}/results-export.xlsx")
        self.assertEqual(response.status_code, 200)
        sheet = load_workbook(BytesIO(response.content)).active
        self.assertEqual(sheet["B2"].value, "Exportación")
        self.assertEqual(sheet["B5"].value, 1)

        self.assertTrue(AuditLog.objects.filter(event_type="ELECTION_RESULTS_EXPORT_CSV").exists())
        self.assertTrue(AuditLog.objects.filter(event_type="ELECTION_RESULTS_EXPORT_XLSX").exists())
