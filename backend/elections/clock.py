"""Election lifecycle classification.

Single source of truth for "is this election accepting votes right now". The state is
never stored: every admission check and every read recomputes it from the election's
configuration and the instant being evaluated.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from .models import Election


class LifecycleState(models.TextChoices):
    INACTIVE = "INACTIVE", "Inactiva"
    UPCOMING = "UPCOMING", "Próxima"
    OPEN = "OPEN", "Abierta"
    CLOSED = "CLOSED", "Cerrada"


def classify_window(*, enabled: bool, opens_at: datetime, closes_at: datetime, now: datetime) -> LifecycleState:
    if not enabled:
        return LifecycleState.INACTIVE
    if now < opens_at:
        return LifecycleState.UPCOMING
    if now > closes_at:
        return LifecycleState.CLOSED
    return LifecycleState.OPEN


def classify(election: "Election", now: datetime) -> LifecycleState:
    return classify_window(
        enabled=bool(election.enabled),
        opens_at=election.opens_at,
        closes_at=election.closes_at,
        now=now,
    )
