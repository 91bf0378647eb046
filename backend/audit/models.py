from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q


class AuditLog(models.Model):
	"""Append-only record of who did what to which election object.

	Request events carry the actor and the HTTP context; system events come from
	Celery tasks or management commands and never have an actor.
	The chosen candidate of a ballot is never written here.
	"""

	SOURCE_REQUEST = "REQUEST"
	SOURCE_SYSTEM = "SYSTEM"
	SOURCE_CHOICES = (
		(SOURCE_REQUEST, "Petición HTTP"),
		(SOURCE_SYSTEM, "Proceso del sistema"),
	)

	source = models.CharField(max_length=10, choices=SOURCE_CHOICES, default=SOURCE_REQUEST)
	actor = models.ForeignKey(
		settings.AUTH_USER_MODEL,
		on_delete=models.SET_NULL,
		null=True,
		blank=True,
		related_name="audit_logs",
	)

	event_type = models.CharField(max_length=80)
	object_type = models.CharField(max_length=80, blank=True, default="")
	object_id = models.CharField(max_length=80, blank=True, default="")

	# Request context; empty for system events.
	path = models.CharField(max_length=300, blank=True, default="")
	method = models.CharField(max_length=10, blank=True, default="")
	status_code = models.PositiveSmallIntegerField(null=True, blank=True)
	ip_address = models.CharField(max_length=64, blank=True, default="")
	user_agent = models.TextField(blank=True, default="")

	metadata = models.JSONField(default=dict, blank=True)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ["-created_at", "-id"]
		indexes = [
			models.Index(fields=["event_type", "created_at"], name="audit_audit_event_t_7c1f0a_idx"),
			models.Index(fields=["object_type", "object_id", "created_at"], name="audit_audit_object__3b9e2d_idx"),
			models.Index(fields=["actor", "created_at"], name="audit_audit_actor_i_5d8a4e_idx"),
			models.Index(fields=["source", "created_at"], name="audit_audit_source_2e6b91_idx"),
		]
		constraints = [
			models.CheckConstraint(
				condition=Q(source="REQUEST") | Q(actor__isnull=True),
				name="audit_system_events_have_no_actor",
			),
		]

	@property
	def is_system(self) -> bool:
		return self.source == self.SOURCE_SYSTEM

	def __str__(self) -> str:
		target = f"{self.object_type}:{self.object_id}" if self.object_type or self.object_id else "-"
		who = "sistema" if self.is_system else (self.actor_id or "-")
		return f"{self.created_at:%Y-%m-%d %H:%M:%S} [{who}] {self.event_type} {target}"
