from __future__ import annotations

from datetime import datetime

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxLengthValidator, MinLengthValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class Election(models.Model):
    title = models.CharField(max_length=200, validators=[MinLengthValidator(3)])
    description = models.TextField()
    opens_at = models.DateTimeField()
    closes_at = models.DateTimeField()
    enabled = models.BooleanField(default=True, db_index=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="created_elections",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-opens_at", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(closes_at__gt=F("opens_at")),
                name="election_closes_after_opens",
            ),
        ]

    def __str__(self) -> str:
        return self.title

    def clean(self):
        super().clean()
        if self.opens_at and self.closes_at and self.closes_at <= self.opens_at:
            raise ValidationError({"closes_at": "La fecha de cierre debe ser posterior a la fecha de apertura."})

        if self.pk and self.window_changed() and self.has_votes():
            raise ValidationError(
                {"closes_at": "No se pueden modificar las fechas de una elección que ya tiene votos registrados."}
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def has_votes(self) -> bool:
        return bool(self.pk) and Vote.objects.filter(election_id=self.pk).exists()

    def window_changed(self) -> bool:
        stored = Election.objects.filter(pk=self.pk).values("opens_at", "closes_at").first()
        if stored is None:
            return False
        return stored["opens_at"] != self.opens_at or stored["closes_at"] != self.closes_at

    def lifecycle_state(self, now: datetime | None = None):
        from .clock import classify

        return classify(self, now or timezone.now())


class Candidate(models.Model):
    PARTY_INDEPENDENT = "Independent"
    DESCRIPTION_MAX_LENGTH = 500

    election = models.ForeignKey(Election, on_delete=models.CASCADE, related_name="candidates")
    name = models.CharField(max_length=160, validators=[MinLengthValidator(2)])
    party = models.CharField(max_length=160, blank=True, default=PARTY_INDEPENDENT)
    description = models.TextField(
        blank=True,
        default="",
        validators=[MaxLengthValidator(DESCRIPTION_MAX_LENGTH)],
    )
    photo = models.URLField(max_length=500, blank=True, default="")
    # Cache of the vote log; only admissions increment it and only reconciliation rewrites it.
    vote_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["name", "election"], name="uniq_candidate_name_per_election"),
        ]

    def __str__(self) -> str:
        return f"{self.election_id}:{self.name}"

    def clean(self):
        super().clean()
        self.name = (self.name or "").strip()
        self.party = (self.party or "").strip() or self.PARTY_INDEPENDENT
        self.description = (self.description or "").strip()

        if self.pk and Vote.objects.filter(candidate_id=self.pk).exclude(election_id=self.election_id).exists():
            raise ValidationError({"election": "No se puede cambiar la elección de una candidatura con votos registrados."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class Vote(models.Model):
    voter = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="votes")
    election = models.ForeignKey(Election, on_delete=models.PROTECT, related_name="votes")
    candidate = models.ForeignKey(Candidate, on_delete=models.PROTECT, related_name="votes")
    cast_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-cast_at", "-id"]
        indexes = [
            models.Index(fields=["election", "candidate"], name="vote_election_candidate_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["voter", "election"], name="uniq_vote_per_voter_and_election"),
        ]

    def __str__(self) -> str:
        return f"vote:{self.election_id}:{self.voter_id}"
