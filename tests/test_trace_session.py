"""
Tests for the TraceSession latency time series: windowing, panning,
retention, derived statistics and axis labels.
"""

import unittest
from datetime import timedelta

from lanprobe.core.models import SessionState, TraceSession
from ._helpers import FakeClock


class TraceSessionTestCase(unittest.TestCase):
    """Windowed views over a session driven by a fake clock."""

    def setUp(self):
        self.clock = FakeClock()
        self.t0 = self.clock.current
        self.session = TraceSession(clock=self.clock, destination='example.com')

    def _fill(self, seconds: int, step: int = 10, latency: float = 20.0):
        """One sample every ``step`` seconds from t0 through t0 + seconds."""
        for offset in range(0, seconds + 1, step):
            self.clock.current = self.t0 + timedelta(seconds=offset)
            self.session.add_sample(latency)

    def test_live_window_keeps_last_minute(self):
        for offset in (0, 30, 90, 150):
            self.clock.current = self.t0 + timedelta(seconds=offset)
            self.session.add_sample(10.0)

        self.assertTrue(self.session.is_live)
        stamps = [(p.timestamp - self.t0).total_seconds() for p in self.session.filtered_history]
        self.assertEqual(stamps, [90, 150])

    def test_window_length_change(self):
        self._fill(600)
        self.assertEqual(len(self.session.filtered_history), 7)
        self.session.set_window_minutes(5)
        self.assertEqual(len(self.session.filtered_history), 31)
        with self.assertRaises(ValueError):
            self.session.set_window_minutes(0)

    def test_invalid_window_rejected_at_creation(self):
        with self.assertRaises(ValueError):
            TraceSession(destination='example.com', window_minutes=0)

    def test_pan_near_now_snaps_to_live(self):
        self._fill(600)
        now = self.clock.current
        self.session.pan_to(now - timedelta(seconds=3))
        self.assertTrue(self.session.is_live)
        self.session.pan_to(now + timedelta(minutes=5))
        self.assertTrue(self.session.is_live)

    def test_pan_is_clamped_to_history(self):
        self._fill(600)
        self.session.pan_to(self.t0 + timedelta(seconds=10))
        self.assertFalse(self.session.is_live)
        self.assertEqual(self.session.view_end, self.t0 + timedelta(minutes=1))
        self.assertEqual(self.session.view_start, self.t0)
        self.assertEqual(len(self.session.filtered_history), 7)

    def test_pinned_view_ignores_new_samples(self):
        self._fill(600)
        pinned = self.t0 + timedelta(seconds=300)
        self.session.pan_to(pinned)
        before = self.session.filtered_history

        self.clock.advance(10)
        self.session.add_sample(999.0)
        self.assertEqual(self.session.view_end, pinned)
        self.assertEqual(self.session.filtered_history, before)

        self.session.reset_to_live()
        self.assertTrue(self.session.is_live)
        self.assertEqual(self.session.filtered_history[-1].latency_ms, 999.0)

    def test_retention_prunes_old_samples(self):
        self.session.add_sample(5.0)
        self.clock.advance(2 * 60 * 60 + 1)
        self.session.add_sample(6.0)
        self.assertEqual([p.latency_ms for p in self.session.history], [6.0])

    def test_paused_view_is_frozen(self):
        self._fill(30)
        self.session.set_paused(True)
        frozen = self.session.filtered_history
        self.clock.advance(5)
        self.session.add_sample(50.0)
        self.assertEqual(self.session.filtered_history, frozen)
        self.session.set_paused(False)
        self.assertEqual(len(self.session.filtered_history), len(frozen) + 1)

    def test_live_view_follows_clock_without_samples(self):
        for latency in (10.0, -1):
            self.clock.advance(1)
            self.session.add_sample(latency)
        self.session.mark_stopped()
        self.assertEqual(self.session.packet_loss, 50.0)

        self.clock.advance(120)
        self.assertEqual(self.session.filtered_history, [])
        self.assertEqual(self.session.packet_loss, 0.0)
        self.assertEqual(self.session.average_latency, 0.0)
        self.assertEqual(self.session.max_latency, 100.0)

    def test_paused_view_ignores_clock(self):
        self._fill(30)
        self.session.set_paused(True)
        self.clock.advance(120)
        self.assertEqual(len(self.session.filtered_history), 4)

    def test_statistics(self):
        for latency in (10.0, -1, 30.0, -1):
            self.clock.advance(1)
            self.session.add_sample(latency)

        self.assertAlmostEqual(self.session.average_latency, 20.0)
        self.assertAlmostEqual(self.session.packet_loss, 50.0)
        self.assertEqual(self.session.max_latency, 100.0)

        self.clock.advance(1)
        self.session.add_sample(250.0)
        self.assertEqual(self.session.max_latency, 250.0)

    def test_statistics_empty(self):
        self.assertEqual(self.session.max_latency, 100.0)
        self.assertEqual(self.session.average_latency, 0.0)
        self.assertEqual(self.session.packet_loss, 0.0)

    def test_axis_labels(self):
        self.clock.current = self.t0 + timedelta(minutes=10)
        self.session.refresh()
        self.assertEqual(self.session.x_axis_start_label, '12:09:00')
        self.assertEqual(self.session.x_axis_mid_label, '12:09:30')
        self.assertEqual(self.session.x_axis_end_label, '12:10:00')

        self.session.set_window_minutes(20)
        self.assertEqual(self.session.x_axis_start_label, '11:50')
        self.assertEqual(self.session.x_axis_mid_label, '12:00')
        self.assertEqual(self.session.x_axis_end_label, '12:10')

    def test_elapsed_freezes_on_stop(self):
        self.session.mark_started()
        self.assertEqual(self.session.state, SessionState.RUNNING)
        self.assertEqual(self.session.status, 'Running')

        self.clock.advance(65)
        self.assertEqual(self.session.elapsed_display, '00:01:05')
        self.session.mark_stopped()
        self.clock.advance(100)
        self.assertEqual(self.session.elapsed_display, '00:01:05')
        self.assertEqual(self.session.status, 'Stopped')

    def test_hop_slots_grow_in_order(self):
        hop = self.session.get_or_create_hop(3)
        self.assertEqual(hop.hop, 3)
        self.assertEqual([h.hop for h in self.session.hops], [1, 2, 3])
        self.assertIs(self.session.get_or_create_hop(2), self.session.hops[1])
