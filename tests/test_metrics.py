"""Tests for PairingMetrics."""

from codeconnect.metrics import PairingMetrics


class TestPairingMetrics:
    def test_starts_at_zero(self):
        snapshot = PairingMetrics().snapshot()
        assert set(snapshot.values()) == {0}

    def test_records(self):
        metrics = PairingMetrics()
        metrics.record_issued(collisions=2)
        metrics.record_claim(success=True)
        metrics.record_claim(success=False)
        metrics.record_expired(3)
        metrics.record_relay(delivered=4, dropped=1)

        assert metrics.codes_issued == 1
        assert metrics.issue_collisions == 2
        assert metrics.claims_succeeded == 1
        assert metrics.claims_rejected == 1
        assert metrics.codes_expired == 3
        assert metrics.messages_relayed == 4
        assert metrics.deliveries_dropped == 1

    def test_active_sessions(self):
        metrics = PairingMetrics()
        metrics.record_session_opened()
        metrics.record_session_opened()
        metrics.record_session_closed()

        assert metrics.active_sessions == 1
        assert metrics.snapshot()["active_sessions"] == 1

    def test_snapshot_is_a_copy(self):
        metrics = PairingMetrics()
        snapshot = metrics.snapshot()
        metrics.record_issued()
        assert snapshot["codes_issued"] == 0
