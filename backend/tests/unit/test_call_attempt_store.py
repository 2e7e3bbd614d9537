"""
Unit Tests for the Call Attempt Store
Forward-only transitions, durations, corrections and statistics
"""
import pytest
from datetime import timedelta

from leaddialer.core.exceptions import CallAttemptNotFoundError, InvalidTransitionError
from leaddialer.domain.models.call_attempt import CallAttemptStatus


@pytest.fixture
def attempt(attempt_store, make_lead, make_agent, t0):
    lead = make_lead()
    agent = make_agent()
    created = attempt_store.create(lead.id, agent.id, "+15550000000", lead.phone, now=t0)
    return attempt_store.set_provider_call_id(created.id, "call-uuid-1")


class TestTransitions:
    """Tests for guarded status transitions"""

    def test_created_as_initiated(self, attempt, t0):
        assert attempt.status == CallAttemptStatus.INITIATED
        assert attempt.started_at == t0
        assert attempt.provider_call_id == "call-uuid-1"
        assert attempt.is_terminal is False

    def test_forward_progress(self, attempt_store, attempt, t0):
        ringing = attempt_store.transition(attempt.id, CallAttemptStatus.RINGING, now=t0)
        answered = attempt_store.transition(
            attempt.id, CallAttemptStatus.ANSWERED, now=t0 + timedelta(seconds=5)
        )
        completed = attempt_store.transition(
            attempt.id, CallAttemptStatus.COMPLETED, now=t0 + timedelta(seconds=65)
        )

        assert ringing.status == CallAttemptStatus.RINGING
        assert answered.answered_at == t0 + timedelta(seconds=5)
        assert completed.ended_at == t0 + timedelta(seconds=65)
        assert completed.duration == 60

    def test_provider_duration_overrides_computed(self, attempt_store, attempt, t0):
        attempt_store.transition(attempt.id, CallAttemptStatus.ANSWERED, now=t0)

        completed = attempt_store.transition(
            attempt.id, CallAttemptStatus.COMPLETED, now=t0 + timedelta(seconds=100), duration=42
        )

        assert completed.duration == 42

    def test_unanswered_call_has_zero_duration(self, attempt_store, attempt, t0):
        busy = attempt_store.transition(attempt.id, CallAttemptStatus.BUSY, now=t0 + timedelta(seconds=20))

        assert busy.duration == 0

    def test_regression_rejected(self, attempt_store, attempt, t0):
        attempt_store.transition(attempt.id, CallAttemptStatus.ANSWERED, now=t0)

        assert attempt_store.transition(attempt.id, CallAttemptStatus.RINGING, now=t0) is None
        assert attempt_store.get(attempt.id).status == CallAttemptStatus.ANSWERED

    def test_duplicate_terminal_rejected(self, attempt_store, attempt, t0):
        attempt_store.transition(attempt.id, CallAttemptStatus.NO_ANSWER, now=t0, error_code="timeout")

        assert attempt_store.transition(attempt.id, CallAttemptStatus.NO_ANSWER, now=t0) is None
        assert attempt_store.transition(attempt.id, CallAttemptStatus.COMPLETED, now=t0) is None
        assert attempt_store.get(attempt.id).status == CallAttemptStatus.NO_ANSWER

    def test_error_fields_only_on_failures(self, attempt_store, attempt, t0):
        attempt_store.transition(attempt.id, CallAttemptStatus.ANSWERED, now=t0, error_code="ignored")
        completed = attempt_store.transition(
            attempt.id, CallAttemptStatus.COMPLETED, now=t0, error_code="ignored", error_message="ignored"
        )

        assert completed.error_code is None
        assert completed.error_message is None

    def test_failure_records_error(self, attempt_store, attempt, t0):
        failed = attempt_store.transition(
            attempt.id, CallAttemptStatus.FAILED, now=t0,
            error_code="invalid_number", error_message="Number not reachable",
        )

        assert failed.error_code == "invalid_number"
        assert failed.error_message == "Number not reachable"

    def test_cannot_transition_to_initiated(self, attempt_store, attempt, t0):
        assert attempt_store.transition(attempt.id, CallAttemptStatus.INITIATED, now=t0) is None


class TestCorrectionsAndLookup:
    """Tests for late corrections and provider id lookup"""

    def test_correction_after_terminal(self, attempt_store, attempt, t0):
        attempt_store.transition(attempt.id, CallAttemptStatus.COMPLETED, now=t0)

        corrected = attempt_store.apply_correction(attempt.id, duration=75, cost=0.12)

        assert corrected.status == CallAttemptStatus.COMPLETED
        assert corrected.duration == 75
        assert corrected.cost == pytest.approx(0.12)

    def test_correction_missing_attempt(self, attempt_store):
        with pytest.raises(CallAttemptNotFoundError):
            attempt_store.apply_correction("missing", duration=1)

    def test_find_by_provider_call_id(self, attempt_store, attempt):
        assert attempt_store.find_by_provider_call_id("call-uuid-1").id == attempt.id
        assert attempt_store.find_by_provider_call_id("other") is None
        assert attempt_store.find_by_provider_call_id("") is None

    def test_provider_call_id_unique(self, attempt_store, attempt, make_lead, t0):
        other_lead = make_lead()
        other = attempt_store.create(other_lead.id, None, "+15550000000", other_lead.phone, now=t0)

        with pytest.raises(InvalidTransitionError):
            attempt_store.set_provider_call_id(other.id, "call-uuid-1")

    def test_cancel_open_for_lead(self, attempt_store, attempt, t0):
        canceled = attempt_store.cancel_open_for_lead(
            attempt.lead_id, error_code="orphaned", error_message="reset", now=t0
        )

        assert canceled == [attempt.id]
        after = attempt_store.get(attempt.id)
        assert after.status == CallAttemptStatus.CANCELED
        assert after.error_code == "orphaned"


class TestCallStats:
    """Tests for aggregate statistics"""

    def test_stats_summary(self, attempt_store, make_lead, make_agent, t0):
        agent = make_agent()
        other_agent = make_agent()
        lead_a, lead_b, lead_c = make_lead(), make_lead(), make_lead()

        a = attempt_store.create(lead_a.id, agent.id, "+15550000000", lead_a.phone, now=t0)
        attempt_store.transition(a.id, CallAttemptStatus.ANSWERED, now=t0)
        attempt_store.transition(a.id, CallAttemptStatus.COMPLETED, now=t0, duration=60)
        attempt_store.apply_correction(a.id, cost=0.5)

        b = attempt_store.create(lead_b.id, agent.id, "+15550000000", lead_b.phone, now=t0)
        attempt_store.transition(b.id, CallAttemptStatus.BUSY, now=t0)

        c = attempt_store.create(lead_c.id, other_agent.id, "+15550000000", lead_c.phone, now=t0)
        attempt_store.transition(c.id, CallAttemptStatus.ANSWERED, now=t0)
        attempt_store.transition(c.id, CallAttemptStatus.COMPLETED, now=t0, duration=20)

        stats = attempt_store.get_call_stats()
        assert stats.total_calls == 3
        assert stats.answered_calls == 2
        assert stats.completed_calls == 2
        assert stats.total_duration == 80
        assert stats.total_cost == pytest.approx(0.5)

        agent_stats = attempt_store.get_call_stats(agent_id=agent.id)
        assert agent_stats.total_calls == 2
        assert agent_stats.average_duration == 30.0

        busy_stats = attempt_store.get_call_stats(status=CallAttemptStatus.BUSY)
        assert busy_stats.total_calls == 1

    def test_empty_stats(self, attempt_store):
        stats = attempt_store.get_call_stats()

        assert stats.total_calls == 0
        assert stats.average_duration == 0.0

    def test_recent_newest_first(self, attempt_store, make_lead, t0):
        lead = make_lead()
        first = attempt_store.create(lead.id, None, "+15550000000", lead.phone, now=t0)
        second = attempt_store.create(lead.id, None, "+15550000000", lead.phone, now=t0 + timedelta(minutes=1))

        recent = attempt_store.get_recent(limit=10)

        assert [r.id for r in recent] == [second.id, first.id]
