from __future__ import annotations

from django.conf import settings
from rest_framework.throttling import SimpleRateThrottle


class VoteSubmitRateThrottle(SimpleRateThrottle):
    """Per-voter limit on vote submissions; falls back to client IP for anonymous calls."""

    scope = "vote_submit"

    def get_cache_key(self, request, view):
        user = getattr(request, "user", None)
        if user is not None and getattr(user, "is_authenticated", False):
            ident = str(user.pk)
        else:
            ident = self.get_ident(request)
        if not ident:
            return None
        return self.cache_format % {"scope": self.scope, "ident": ident}

    def get_rate(self):
        explicit = str(getattr(settings, "VOTE_SUBMIT_THROTTLE_RATE", "") or "").strip()
        if explicit:
            return explicit
        return super().get_rate()
