"""
Status Reconciler
Applies provider callbacks and agent-console updates to call attempts and leads
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Tuple, Any

from leaddialer.core.exceptions import (
    UnresolvableCallbackError, CallAttemptOwnershipError, InvalidTransitionError,
    AgentNotFoundError,
)
from leaddialer.domain.interfaces.telephony_gateway import ConnectInstruction
from leaddialer.domain.models.call_attempt import (
    CallAttempt, CallAttemptStatus, ManualCallUpdate, TERMINAL_STATUSES
)
from leaddialer.domain.models.events import LifecycleEvent, LifecycleEventType
from leaddialer.domain.services.retry_policy import RetryPolicy
from leaddialer.domain.services.working_set import WorkingSet
from leaddialer.infrastructure.events.publisher import CallEventPublisher
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


# Provider vocabulary (Vonage and Twilio words) to attempt status
PROVIDER_STATUS_MAP: Dict[str, CallAttemptStatus] = {
    "started": CallAttemptStatus.INITIATED,
    "initiated": CallAttemptStatus.INITIATED,
    "queued": CallAttemptStatus.INITIATED,
    "ringing": CallAttemptStatus.RINGING,
    "answered": CallAttemptStatus.ANSWERED,
    "in-progress": CallAttemptStatus.ANSWERED,
    "completed": CallAttemptStatus.COMPLETED,
    "busy": CallAttemptStatus.BUSY,
    "timeout": CallAttemptStatus.NO_ANSWER,
    "unanswered": CallAttemptStatus.NO_ANSWER,
    "no-answer": CallAttemptStatus.NO_ANSWER,
    "no_answer": CallAttemptStatus.NO_ANSWER,
    "machine": CallAttemptStatus.NO_ANSWER,
    "failed": CallAttemptStatus.FAILED,
    "rejected": CallAttemptStatus.FAILED,
    "cancelled": CallAttemptStatus.CANCELED,
    "canceled": CallAttemptStatus.CANCELED,
}


def map_provider_status(provider_status: Optional[str]) -> Tuple[CallAttemptStatus, Optional[str]]:
    """
    Map a provider status word onto the attempt status set.

    Returns (status, error_message); unknown words become ``failed`` with
    an explanatory message.
    """
    word = (provider_status or "").strip().lower()
    status = PROVIDER_STATUS_MAP.get(word)
    if status is None:
        return CallAttemptStatus.FAILED, f"Unknown provider status: {provider_status}"
    return status, None


def _coerce_duration(duration: Any) -> Optional[int]:
    if duration is None or duration == "":
        return None
    try:
        return max(0, int(float(duration)))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric duration {duration!r}")
        return None


def _coerce_cost(cost: Any) -> Optional[float]:
    if cost is None or cost == "":
        return None
    try:
        return float(cost)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric cost {cost!r}")
        return None


@dataclass
class ReconcileResult:
    """What a callback or manual update did."""
    call_attempt_id: str
    lead_id: str
    status: str
    applied: bool
    lead_status: Optional[str] = None
    corrected: bool = False


class StatusReconciler:
    """
    Consumes provider progress and manual overrides.

    Every attempt update goes through CallAttemptStore.transition, which is
    guarded by the allowed predecessor statuses. A duplicate, late or
    out-of-order callback is therefore rejected there and has no effect on
    the lead, the agent counters or the working set.
    """

    def __init__(
        self,
        lead_store: LeadStore,
        attempt_store: CallAttemptStore,
        agent_directory: AgentDirectory,
        working_set: WorkingSet,
        retry_policy: RetryPolicy,
        publisher: Optional[CallEventPublisher] = None,
        greeting: str = "Connecting you to our sales representative.",
        caller_id: Optional[str] = None,
    ):
        self.leads = lead_store
        self.attempts = attempt_store
        self.agents = agent_directory
        self.working_set = working_set
        self.retry_policy = retry_policy
        self.publisher = publisher
        self.greeting = greeting
        self.caller_id = caller_id

    # ------------------------------------------------------------------
    # Provider callbacks
    # ------------------------------------------------------------------

    async def apply_outcome(
        self,
        provider_call_id: Optional[str],
        provider_status: Optional[str],
        duration: Any = None,
        detail: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Apply one provider status callback.

        Raises:
            UnresolvableCallbackError: no attempt carries this provider call id
        """
        attempt = self._resolve(provider_call_id)
        status, error_message = map_provider_status(provider_status)
        if error_message:
            logger.warning(f"Call {provider_call_id}: {error_message}")

        error_code = None
        if status.value in TERMINAL_STATUSES and status != CallAttemptStatus.COMPLETED:
            error_code = detail or ("unknown_status" if error_message else (provider_status or "").lower())

        return await self._apply_status(
            attempt,
            status,
            duration=_coerce_duration(duration),
            error_code=error_code,
            error_message=error_message or detail,
            now=now,
        )

    async def handle_answer(
        self,
        provider_call_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> ConnectInstruction:
        """
        The callee picked up: mark the attempt answered and tell the
        provider which agent to bridge to.
        """
        attempt = self._resolve(provider_call_id)
        result = await self._apply_status(attempt, CallAttemptStatus.ANSWERED, now=now)

        if result.status != CallAttemptStatus.ANSWERED.value or not attempt.agent_id:
            logger.warning(
                f"Answer for call {provider_call_id} cannot be bridged (attempt status {result.status})"
            )
            return ConnectInstruction(agent_phone=None, greeting=self.greeting, caller_id=self.caller_id)

        try:
            agent = self.agents.get(attempt.agent_id)
        except AgentNotFoundError:
            logger.error(f"Agent {attempt.agent_id} for call {provider_call_id} no longer exists")
            return ConnectInstruction(agent_phone=None, greeting=self.greeting, caller_id=self.caller_id)

        logger.info(f"Connecting call {provider_call_id} to agent {agent.id}")
        return ConnectInstruction(agent_phone=agent.phone, greeting=self.greeting, caller_id=self.caller_id)

    def apply_correction(
        self,
        provider_call_id: Optional[str],
        duration: Any = None,
        cost: Any = None,
    ) -> CallAttempt:
        """Late duration/cost report; allowed after the attempt is terminal."""
        attempt = self._resolve(provider_call_id)
        return self._correct(attempt, _coerce_duration(duration), _coerce_cost(cost))

    # ------------------------------------------------------------------
    # Agent console
    # ------------------------------------------------------------------

    async def apply_manual_update(
        self,
        call_attempt_id: str,
        agent_id: str,
        update: ManualCallUpdate,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Status update entered by the agent who owns the call.

        Raises:
            CallAttemptNotFoundError: unknown attempt id
            CallAttemptOwnershipError: attempt belongs to another agent
            InvalidTransitionError: the status cannot follow the current one
        """
        attempt = self.attempts.get(call_attempt_id)
        if attempt.agent_id != agent_id:
            raise CallAttemptOwnershipError(
                f"Call attempt {call_attempt_id} does not belong to agent {agent_id}"
            )

        result = await self._apply_status(
            attempt,
            update.status,
            duration=update.duration,
            error_code="manual" if update.status.value in TERMINAL_STATUSES else None,
            notes=update.notes,
            now=now,
            event=LifecycleEventType.CALL_STATUS_UPDATED,
        )
        if not result.applied and not result.corrected:
            raise InvalidTransitionError(
                f"Call attempt {call_attempt_id} cannot move from {result.status} to {update.status.value}"
            )
        return result

    # ------------------------------------------------------------------

    def _resolve(self, provider_call_id: Optional[str]) -> CallAttempt:
        attempt = self.attempts.find_by_provider_call_id(provider_call_id) if provider_call_id else None
        if attempt is None:
            logger.error(f"Callback for unknown provider call id {provider_call_id!r}")
            raise UnresolvableCallbackError(provider_call_id)
        return attempt

    def _correct(
        self,
        attempt: CallAttempt,
        duration: Optional[int] = None,
        cost: Optional[float] = None,
    ) -> CallAttempt:
        """
        Overwrite duration/cost. Once the attempt is terminal its duration
        is already in the agent's talk time, so the difference is applied
        there as well.
        """
        if duration is None and cost is None:
            return attempt

        corrected = self.attempts.apply_correction(attempt.id, duration=duration, cost=cost)
        if duration is not None and attempt.is_terminal and attempt.agent_id:
            delta = duration - (attempt.duration or 0)
            if delta:
                self.agents.adjust_talk_time(attempt.agent_id, delta)
        return corrected

    async def _apply_status(
        self,
        attempt: CallAttempt,
        status: CallAttemptStatus,
        duration: Optional[int] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        event: Optional[LifecycleEventType] = None,
    ) -> ReconcileResult:
        now = now or utcnow()
        updated = self.attempts.transition(
            attempt.id,
            status,
            now=now,
            duration=duration,
            error_code=error_code,
            error_message=error_message,
            notes=notes,
        )

        if updated is None:
            current = self.attempts.get(attempt.id)
            corrected = False
            if current.is_terminal and status.value in TERMINAL_STATUSES and duration is not None:
                self._correct(current, duration=duration)
                corrected = True
                logger.info(f"Applied duration correction ({duration}s) to attempt {attempt.id}")
            else:
                logger.info(
                    f"Ignoring {status.value} for attempt {attempt.id}: already {current.status.value}"
                )
            return ReconcileResult(
                call_attempt_id=attempt.id,
                lead_id=attempt.lead_id,
                status=current.status.value,
                applied=False,
                corrected=corrected,
            )

        lead = None
        if status == CallAttemptStatus.ANSWERED:
            lead = self.leads.mark_answered(attempt.lead_id, now=now)
        elif status == CallAttemptStatus.COMPLETED:
            lead = self.leads.mark_transferred(attempt.lead_id, now=now)
        elif self.retry_policy.counts(status.value):
            lead = self.leads.record_outcome(
                attempt.lead_id,
                status.value,
                retry_delay=self.retry_policy.delay_for(status.value),
                max_attempts=self.retry_policy.max_attempts,
                duration=updated.duration,
                notes=notes,
                now=now,
            )
        elif status == CallAttemptStatus.CANCELED:
            lead = self.leads.release_without_attempt(attempt.lead_id, now=now)

        if updated.is_terminal:
            self.working_set.remove(attempt.lead_id)
            if updated.agent_id:
                self.agents.record_call_result(
                    updated.agent_id,
                    successful=status == CallAttemptStatus.COMPLETED,
                    talk_time=updated.duration,
                )

        logger.info(
            f"Attempt {attempt.id} -> {status.value}"
            + (f", lead {attempt.lead_id} -> {lead.status.value}" if lead else "")
        )

        if event is None:
            event = (
                LifecycleEventType.CALL_ANSWERED
                if status == CallAttemptStatus.ANSWERED
                else LifecycleEventType.CALL_STATUS_UPDATED
            )
        await self._publish(event, updated)

        return ReconcileResult(
            call_attempt_id=attempt.id,
            lead_id=attempt.lead_id,
            status=updated.status.value,
            applied=True,
            lead_status=lead.status.value if lead else None,
        )

    async def _publish(self, event_type: LifecycleEventType, attempt: CallAttempt) -> None:
        if self.publisher is None:
            return
        await self.publisher.publish(LifecycleEvent(
            event=event_type,
            lead_id=attempt.lead_id,
            agent_id=attempt.agent_id,
            call_attempt_id=attempt.id,
            status=attempt.status.value,
        ))
