from datetime import timedelta
from types import SimpleNamespace

from django.test import SimpleTestCase
from django.utils import timezone

from elections.clock import LifecycleState, classify, classify_window
from elections.models import Election


class ClassifyWindowTests(SimpleTestCase):
    def setUp(self):
        self.opens_at = timezone.now().replace(microsecond=0)
        self.closes_at = self.opens_at + timedelta(hours=1)

    def _classify(self, now, enabled=True):
        return classify_window(enabled=enabled, opens_at=self.opens_at, closes_at=self.closes_at, now=now)

    def test_disabled_election_is_inactive_regardless_of_time(self):
        for now in (
            self.opens_at - timedelta(days=1),
            self.opens_at + timedelta(minutes=30),
            self.closes_at + timedelta(days=1),
        ):
            self.assertEqual(self._classify(now, enabled=False), LifecycleState.INACTIVE)

    def test_before_opening_is_upcoming(self):
        self.assertEqual(self._classify(self.opens_at - timedelta(seconds=1)), LifecycleState.UPCOMING)

    def test_both_bounds_are_open(self):
        self.assertEqual(self._classify(self.opens_at), LifecycleState.OPEN)
        self.assertEqual(self._classify(self.opens_at + timedelta(minutes=30)), LifecycleState.OPEN)
        self.assertEqual(self._classify(self.closes_at), LifecycleState.OPEN)

    def test_after_closing_is_closed(self):
        self.assertEqual(self._classify(self.closes_at + timedelta(seconds=1)), LifecycleState.CLOSED)

    def test_same_inputs_give_same_state(self):
        now = self.opens_at + timedelta(minutes=5)
        self.assertEqual({self._classify(now) for _ in range(5)}, {LifecycleState.OPEN})

    def test_classify_reads_election_fields(self):
        election = SimpleNamespace(enabled=True, opens_at=self.opens_at, closes_at=self.closes_at)
        self.assertEqual(classify(election, self.opens_at - timedelta(minutes=1)), LifecycleState.UPCOMING)
        election.enabled = False
        self.assertEqual(classify(election, self.opens_at + timedelta(minutes=1)), LifecycleState.INACTIVE)

    def test_election_lifecycle_state_uses_its_window(self):
        election = Election(title="Consulta", enabled=True, opens_at=self.opens_at, closes_at=self.closes_at)
        self.assertEqual(election.lifecycle_state(self.closes_at), LifecycleState.OPEN)
        self.assertEqual(election.lifecycle_state(self.closes_at + timedelta(seconds=1)), LifecycleState.CLOSED)
