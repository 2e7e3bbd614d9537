"""
Unit Tests for Working Set and Retry Policy
"""
import pytest
from datetime import datetime, timedelta

from leaddialer.domain.services.retry_policy import RetryPolicy
from leaddialer.domain.services.working_set import WorkingSet


class TestWorkingSet:
    """Tests for the bounded in-flight set"""

    def test_capacity_is_structural(self):
        ws = WorkingSet(limit=2)

        assert ws.try_add("lead-1", "agent-1") is True
        assert ws.try_add("lead-2", "agent-2") is True
        assert ws.try_add("lead-3", "agent-3") is False
        assert len(ws) == 2
        assert ws.has_capacity() is False

    def test_same_lead_cannot_be_added_twice(self):
        ws = WorkingSet(limit=5)
        ws.try_add("lead-1", "agent-1")

        assert ws.try_add("lead-1", "agent-2") is False
        assert ws.get("lead-1").agent_id == "agent-1"

    def test_remove_frees_slot(self):
        ws = WorkingSet(limit=1)
        ws.try_add("lead-1", "agent-1")

        entry = ws.remove("lead-1")

        assert entry.lead_id == "lead-1"
        assert "lead-1" not in ws
        assert ws.has_capacity() is True
        assert ws.remove("lead-1") is None

    def test_attach_attempt_and_agent_ids(self):
        ws = WorkingSet(limit=3)
        ws.try_add("lead-1", "agent-1")
        ws.try_add("lead-2", "agent-2")
        ws.attach_attempt("lead-1", "attempt-1")

        assert ws.get("lead-1").call_attempt_id == "attempt-1"
        assert ws.agent_ids() == {"agent-1", "agent-2"}

    def test_snapshot_orders_by_start(self):
        start = datetime(2025, 1, 6, 15, 0, 0)
        ws = WorkingSet(limit=3)
        ws.try_add("late", "a", now=start + timedelta(seconds=30))
        ws.try_add("early", "b", now=start)

        snapshot = ws.snapshot()

        assert [e.lead_id for e in snapshot] == ["early", "late"]
        assert snapshot[0].elapsed_seconds(start + timedelta(seconds=45)) == 45

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkingSet(limit=0)


class TestRetryPolicy:
    """Tests for fixed per-outcome delays"""

    def test_default_delays(self):
        policy = RetryPolicy()

        assert policy.delay_for("no_answer") == timedelta(minutes=30)
        assert policy.delay_for("busy") == timedelta(minutes=15)
        assert policy.delay_for("failed") == timedelta(minutes=30)
        assert policy.max_attempts == 3

    def test_countable_outcomes(self):
        assert RetryPolicy.counts("busy") is True
        assert RetryPolicy.counts("no_answer") is True
        assert RetryPolicy.counts("failed") is True
        assert RetryPolicy.counts("completed") is False
        assert RetryPolicy.counts("canceled") is False

    def test_no_delay_for_success(self):
        with pytest.raises(ValueError):
            RetryPolicy().delay_for("completed")

    def test_cap_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_settings(self, settings_factory):
        policy = RetryPolicy.from_settings(settings_factory(max_attempts=5, busy_delay_minutes=5))

        assert policy.max_attempts == 5
        assert policy.delay_for("busy") == timedelta(minutes=5)
