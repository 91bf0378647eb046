from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import RequestFactory
from rest_framework.test import APITestCase

from audit.models import AuditLog
from audit.services import log_event, log_system_event


class AuditLogApiTests(APITestCase):
	def setUp(self):
		user_model = get_user_model()
		self.admin = user_model.objects.create_user(
			username="admin_audit_api",
			password="pass1234",
			role=user_model.ROLE_ADMIN,
		)
		self.voter = user_model.objects.create_user(
			username="voter_audit_api",
			password="pass1234",
			role=user_model.ROLE_VOTER,
		)
		AuditLog.objects.create(actor=self.voter, event_type="ELECTION_VOTE_SUBMIT", object_type="Election", object_id="1")
		AuditLog.objects.create(actor=self.admin, event_type="ELECTION_CREATE", object_type="Election", object_id="2")
		log_system_event(event_type="ELECTION_TALLY_RECONCILED", object_type="Election", object_id=1)

	def test_voter_cannot_read_audit_log(self):
		self.client.force_authenticate(user=self.voter)
		response = self.client.get("/api/audit-logs/")
		self.assertEqual(response.status_code, 403)

	def test_filter_by_event_prefix_and_object(self):
		self.client.force_authenticate(user=self.admin)
		response = self.client.get("/api/audit-logs/", {"event_prefix": "election_vote", "object_id": "1"})

		self.assertEqual(response.status_code, 200)
		self.assertEqual([row["event_type"] for row in response.data], ["ELECTION_VOTE_SUBMIT"])
		self.assertEqual(response.data[0]["actor_username"], "voter_audit_api")

	def test_system_events_have_no_actor(self):
		self.client.force_authenticate(user=self.admin)
		response = self.client.get("/api/audit-logs/", {"event_type": "election_tally_reconciled"})

		self.assertEqual(len(response.data), 1)
		self.assertIsNone(response.data[0]["actor"])
		self.assertEqual(response.data[0]["actor_username"], "")

	def test_filter_by_source(self):
		self.client.force_authenticate(user=self.admin)
		response = self.client.get("/api/audit-logs/", {"source": AuditLog.SOURCE_SYSTEM})

		self.assertEqual(response.status_code, 200)
		self.assertEqual([row["event_type"] for row in response.data], ["ELECTION_TALLY_RECONCILED"])
		self.assertEqual(response.data[0]["source"], "SYSTEM")


class AuditLogSourceTests(APITestCase):
	def setUp(self):
		user_model = get_user_model()
		self.admin = user_model.objects.create_user(
			username="admin_audit_source",
			password="pass1234",
			role=user_model.ROLE_ADMIN,
		)

	def test_request_events_record_http_context(self):
		request = RequestFactory().post(
			"/api/elections/manage/",
			HTTP_X_FORWARDED_FOR="10.0.0.7, 172.16.0.1",
			HTTP_USER_AGENT="pytest",
		)
		request.user = self.admin

		log = log_event(request, event_type="ELECTION_CREATE", object_type="Election", object_id=3, status_code=201)

		self.assertEqual(log.source, AuditLog.SOURCE_REQUEST)
		self.assertFalse(log.is_system)
		self.assertEqual(log.actor, self.admin)
		self.assertEqual(log.ip_address, "10.0.0.7")
		self.assertEqual(log.method, "POST")
		self.assertEqual(log.object_id, "3")

	def test_anonymous_requests_are_not_logged(self):
		request = RequestFactory().get("/api/elections/")
		request.user = None

		self.assertIsNone(log_event(request, event_type="ELECTION_LIST"))
		self.assertFalse(AuditLog.objects.exists())

	def test_system_events_are_marked_as_system(self):
		log = log_system_event(event_type="ELECTION_TALLY_RECONCILED", object_type="Election", object_id=4)

		self.assertTrue(log.is_system)
		self.assertEqual(log.path, "")
		self.assertIn("[sistema]", str(log))

	def test_system_event_with_actor_is_rejected(self):
		with self.assertRaises(IntegrityError):
			with transaction.atomic():
				AuditLog.objects.create(source=AuditLog.SOURCE_SYSTEM, actor=self.admin, event_type="ELECTION_CREATE")
