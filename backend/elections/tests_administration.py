from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from elections.exceptions import Conflict, NotFound
from elections.models import Candidate, Election, Vote
from elections.services import (
    admit_vote,
    create_candidate,
    create_election,
    delete_candidate,
    delete_election,
    update_candidate,
    update_election,
)


class ElectionAdministrationTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(
            username="admin_administration",
            password="pass1234",
            role=user_model.ROLE_ADMIN,
        )
        self.voter = user_model.objects.create_user(username="voter_administration", password="pass1234")
        self.now = timezone.now().replace(microsecond=0)
        self.election = create_election(
            created_by=self.admin,
            title="  Presupuesto Participativo  ",
            description="Elección de prueba.",
            opens_at=self.now - timedelta(hours=1),
            closes_at=self.now + timedelta(hours=2),
        )
        self.candidate = create_candidate(election_id=self.election.id, name="Sofía Lara", party="")

    def _cast(self):
        admit_vote(voter_id=self.voter.id, election_id=self.election.id, candidate_id=self.candidate.id)

    def test_create_election_rejects_inverted_window(self):
        with self.assertRaises(ValidationError):
            create_election(
                created_by=self.admin,
                title="Ventana inválida",
                description="x",
                opens_at=self.now,
                closes_at=self.now,
            )

    def test_create_election_strips_title(self):
        self.assertEqual(self.election.title, "Presupuesto Participativo")

    def test_candidate_defaults_to_independent_party(self):
        self.assertEqual(self.candidate.party, Candidate.PARTY_INDEPENDENT)
        self.assertEqual(self.candidate.vote_count, 0)

    def test_create_candidate_requires_existing_election(self):
        with self.assertRaises(NotFound) as ctx:
            create_candidate(election_id=999999, name="Nadie")
        self.assertEqual(ctx.exception.kind, NotFound.KIND_ELECTION)

    def test_duplicate_candidate_name_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            create_candidate(election_id=self.election.id, name="Sofía Lara")

    def test_description_longer_than_limit_is_rejected(self):
        with self.assertRaises(ValidationError):
            create_candidate(election_id=self.election.id, name="Texto Largo", description="x" * 501)

    def test_delete_candidate_with_votes_is_conflict(self):
        self._cast()

        with self.assertRaises(Conflict):
            delete_candidate(self.candidate.id)

        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.vote_count, 1)
        self.assertEqual(Vote.objects.filter(candidate=self.candidate).count(), 1)

    def test_delete_candidate_without_votes(self):
        delete_candidate(self.candidate.id)
        self.assertFalse(Candidate.objects.filter(id=self.candidate.id).exists())

    def test_update_candidate_keeps_counter(self):
        self._cast()
        updated = update_candidate(self.candidate.id, party="Frente Cívico", description="Nueva propuesta.")

        self.assertEqual(updated.party, "Frente Cívico")
        self.candidate.refresh_from_db()
        self.assertEqual(self.candidate.vote_count, 1)

    def test_update_unknown_candidate(self):
        with self.assertRaises(NotFound):
            update_candidate(999999, name="Otro")

    def test_window_change_with_votes_is_conflict(self):
        self._cast()

        with self.assertRaises(Conflict):
            update_election(self.election.id, closes_at=self.now + timedelta(hours=5))

        self.election.refresh_from_db()
        self.assertEqual(self.election.closes_at, self.now + timedelta(hours=2))

    def test_other_fields_stay_editable_after_votes(self):
        self._cast()

        updated = update_election(
            self.election.id,
            title="Presupuesto 2026",
            enabled=False,
            closes_at=self.election.closes_at,
        )

        self.assertEqual(updated.title, "Presupuesto 2026")
        self.assertFalse(updated.enabled)

    def test_window_change_without_votes(self):
        new_close = self.now + timedelta(hours=6)
        updated = update_election(self.election.id, closes_at=new_close)
        self.assertEqual(updated.closes_at, new_close)

    def test_update_cannot_invert_window(self):
        with self.assertRaises(ValidationError):
            update_election(self.election.id, closes_at=self.now - timedelta(hours=2))

    def test_delete_election_with_votes_is_conflict(self):
        self._cast()

        with self.assertRaises(Conflict):
            delete_election(self.election.id)

        self.assertTrue(Election.objects.filter(id=self.election.id).exists())

    def test_delete_election_without_votes_cascades_candidates(self):
        delete_election(self.election.id)

        self.assertFalse(Election.objects.filter(id=self.election.id).exists())
        self.assertFalse(Candidate.objects.filter(id=self.candidate.id).exists())

    def test_delete_unknown_election(self):
        with self.assertRaises(NotFound):
            delete_election(999999)
