"""
Dialer Worker
Polling dispatcher that places outbound calls for eligible leads

The dispatcher and the status reconciler share the in-memory working set,
so they run in the same process as the webhook API:
    python -m leaddialer.workers.dialer_worker
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Tuple

from dotenv import load_dotenv

from leaddialer.core.config import Settings, get_settings
from leaddialer.core.exceptions import (
    AgentUnavailableError, ConcurrencyLimitReachedError, CallPlacementError
)
from leaddialer.domain.interfaces.telephony_gateway import (
    TelephonyGateway, CallbackTargets, PlacementResult
)
from leaddialer.domain.models.agent import Agent
from leaddialer.domain.models.call_attempt import CallAttempt, CallAttemptStatus
from leaddialer.domain.models.events import LifecycleEvent, LifecycleEventType
from leaddialer.domain.models.lead import Lead
from leaddialer.domain.services.retry_policy import RetryPolicy
from leaddialer.domain.services.status_reconciler import StatusReconciler
from leaddialer.domain.services.working_set import WorkingSet
from leaddialer.infrastructure.events.publisher import CallEventPublisher
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Scheduling loop for outbound calls.

    Responsibilities:
    - Pick the next eligible lead by priority rank then age
    - Keep in-flight calls within the concurrency limit
    - Pair each call with an available agent and place it via the gateway
    - Periodically reset leads stuck in ``calling``

    The working set is the only scheduler state. It is owned here and
    shared with the reconciler, which frees a slot on terminal outcomes.
    """

    MAX_BACKOFF_SECONDS = 60

    def __init__(
        self,
        lead_store: LeadStore,
        attempt_store: CallAttemptStore,
        agent_directory: AgentDirectory,
        gateway: TelephonyGateway,
        settings: Optional[Settings] = None,
        publisher: Optional[CallEventPublisher] = None,
    ):
        self.settings = settings or get_settings()
        self.leads = lead_store
        self.attempts = attempt_store
        self.agents = agent_directory
        self.gateway = gateway
        self.publisher = publisher

        self.working_set = WorkingSet(self.settings.concurrency_limit)
        self.reconciler = StatusReconciler(
            lead_store=lead_store,
            attempt_store=attempt_store,
            agent_directory=agent_directory,
            working_set=self.working_set,
            retry_policy=RetryPolicy.from_settings(self.settings),
            publisher=publisher,
            greeting=self.settings.connect_greeting,
            caller_id=self.settings.caller_id,
        )

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None

        # Stats
        self._calls_placed = 0
        self._placement_failures = 0
        self._leads_recovered = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, recover_on_startup: bool = True) -> None:
        """Initialize collaborators and launch the tick and recovery loops."""
        if self._loop_task is not None:
            return

        logger.info("Starting dispatcher...")
        await self.gateway.initialize()
        if self.publisher:
            await self.publisher.initialize()

        if recover_on_startup:
            self.run_recovery()

        self._stop_event = asyncio.Event()
        self.running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="dispatcher-ticks")
        if self.settings.recovery_interval_seconds > 0:
            self._recovery_task = asyncio.create_task(self._recovery_loop(), name="dispatcher-recovery")

        logger.info(
            f"Dispatcher started (gateway={self.gateway.name}, "
            f"limit={self.working_set.limit}, tick={self.settings.tick_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Graceful shutdown."""
        logger.info("Stopping dispatcher...")
        self.running = False
        if self._stop_event:
            self._stop_event.set()

        for task in (self._loop_task, self._recovery_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_task = None
        self._recovery_task = None

        await self.gateway.cleanup()
        if self.publisher:
            await self.publisher.close()

        logger.info(
            f"Dispatcher stopped. Placed: {self._calls_placed}, "
            f"placement failures: {self._placement_failures}, recovered: {self._leads_recovered}"
        )

    def pause(self) -> None:
        """Stop placing new calls. In-flight calls keep reconciling."""
        self.running = False
        logger.info("Dispatcher paused")

    def resume(self) -> None:
        self.running = True
        logger.info("Dispatcher resumed")

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while not self._stop_event.is_set():
            delay = self.settings.tick_interval_seconds
            try:
                await self.tick()
                consecutive_errors = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Dispatcher tick error ({consecutive_errors}): {e}", exc_info=True)
                delay = max(delay, min(5 * consecutive_errors, self.MAX_BACKOFF_SECONDS))

            await self._wait(delay)

    async def _recovery_loop(self) -> None:
        while not self._stop_event.is_set():
            await self._wait(self.settings.recovery_interval_seconds)
            if self._stop_event.is_set():
                break
            try:
                self.run_recovery()
            except Exception as e:
                logger.error(f"Stuck-lead recovery failed: {e}", exc_info=True)

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> Optional[CallAttempt]:
        """
        One scheduling step. Places at most one call.

        Returns the placed attempt, or None when nothing was placed.
        """
        if not self.running or not self.working_set.has_capacity():
            return None

        now = now or utcnow()
        candidate = self.leads.select_next_eligible(now)
        if candidate is None:
            return None
        if candidate.id in self.working_set:
            logger.warning(f"Lead {candidate.id} is pending but still tracked as in flight")
            return None

        agent = self.agents.find_available_agent(exclude=self.working_set.agent_ids())
        if agent is None:
            logger.debug(f"No agent available for lead {candidate.id}; leaving it pending")
            return None

        lead = self.leads.claim_next_eligible(agent.id, now)
        if lead is None:
            return None
        if not self.working_set.try_add(lead.id, agent.id, now):
            self.leads.revert_to_pending(lead.id, now)
            return None

        attempt, _ = await self._place(lead, agent, now)
        return attempt

    async def start_manual_call(
        self,
        lead_id: str,
        agent_id: str,
        now: Optional[datetime] = None,
    ) -> CallAttempt:
        """
        Agent-initiated call on a pending or self-claimed lead.

        Raises:
            AgentUnavailableError: agent inactive or already on a call
            ConcurrencyLimitReachedError: working set is full
            LeadNotAvailableError: lead cannot be called by this agent
            CallPlacementError: the gateway rejected the call
        """
        now = now or utcnow()
        agent = self.agents.get(agent_id)
        if not agent.active:
            raise AgentUnavailableError(f"Agent {agent_id} is not active")
        if agent_id in self.working_set.agent_ids():
            raise AgentUnavailableError(f"Agent {agent_id} is already on a call")
        if not self.working_set.has_capacity():
            raise ConcurrencyLimitReachedError(
                f"Concurrency limit of {self.working_set.limit} calls reached"
            )

        lead = self.leads.start_calling(lead_id, agent_id, now)
        if not self.working_set.try_add(lead.id, agent_id, now):
            self.leads.revert_to_pending(lead.id, now)
            raise ConcurrencyLimitReachedError(
                f"Concurrency limit of {self.working_set.limit} calls reached"
            )

        attempt, result = await self._place(lead, agent, now)
        if attempt is None:
            raise CallPlacementError(result.error or "Call placement failed", result.error_code)
        return attempt

    def callback_targets(self) -> CallbackTargets:
        base = self.settings.api_base_url.rstrip("/") + self.settings.api_prefix
        return CallbackTargets(
            status_url=f"{base}/webhooks/vonage/event",
            answer_url=f"{base}/webhooks/vonage/answer",
            ring_timeout_seconds=self.settings.ring_timeout_seconds,
        )

    async def _place(
        self,
        lead: Lead,
        agent: Agent,
        now: datetime,
    ) -> Tuple[Optional[CallAttempt], PlacementResult]:
        """Create the attempt and place the call for a lead already in ``calling``."""
        try:
            attempt = self.attempts.create(
                lead_id=lead.id,
                agent_id=agent.id,
                from_number=self.settings.caller_id,
                to_number=lead.phone,
                now=now,
            )
        except Exception:
            self.leads.revert_to_pending(lead.id, now)
            self.working_set.remove(lead.id)
            raise
        self.working_set.attach_attempt(lead.id, attempt.id)

        try:
            result = await self.gateway.place_call(
                to_number=lead.phone,
                from_number=self.settings.caller_id,
                callbacks=self.callback_targets(),
            )
        except Exception as e:
            logger.error(f"Gateway raised while calling lead {lead.id}: {e}", exc_info=True)
            result = PlacementResult.failed(str(e), error_code="gateway_error")

        if not result.success or not result.provider_call_id:
            self._placement_failed(lead, attempt, result, now)
            return None, result

        attempt = self.attempts.set_provider_call_id(attempt.id, result.provider_call_id)
        self._calls_placed += 1
        logger.info(
            f"Call {result.provider_call_id} placed for lead {lead.id} "
            f"(agent {agent.id}, {len(self.working_set)}/{self.working_set.limit} in flight)"
        )

        if self.publisher:
            await self.publisher.publish(LifecycleEvent(
                event=LifecycleEventType.CALL_INITIATED,
                lead_id=lead.id,
                agent_id=agent.id,
                call_attempt_id=attempt.id,
                status=attempt.status.value,
            ))
        return attempt, result

    def _placement_failed(
        self,
        lead: Lead,
        attempt: CallAttempt,
        result: PlacementResult,
        now: datetime,
    ) -> None:
        """Undo the claim. A placement failure never costs the lead an attempt."""
        self._placement_failures += 1
        logger.warning(f"Placement failed for lead {lead.id}: {result.error}")
        self.attempts.transition(
            attempt.id,
            CallAttemptStatus.FAILED,
            now=now,
            error_code=result.error_code or "placement_failed",
            error_message=result.error or "Call placement failed",
        )
        self.leads.revert_to_pending(lead.id, now)
        self.working_set.remove(lead.id)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def run_recovery(self, now: Optional[datetime] = None) -> List[str]:
        """
        Reset leads stuck in ``calling`` past the threshold, and answered
        calls that outlived the maximum call duration.

        Their open attempts are closed as canceled (``orphaned``) and their
        working-set slots freed. Attempt counts are left unchanged.
        """
        now = now or utcnow()
        lead_ids = self.leads.reset_stuck(
            timedelta(seconds=self.settings.stuck_threshold_seconds),
            now,
            answered_threshold=timedelta(seconds=self.settings.max_call_duration_seconds),
        )
        for lead_id in lead_ids:
            self.attempts.cancel_open_for_lead(
                lead_id,
                error_code="orphaned",
                error_message="Reset by stuck-lead recovery",
                now=now,
            )
            self.working_set.remove(lead_id)

        if lead_ids:
            self._leads_recovered += len(lead_ids)
            logger.warning(f"Reset {len(lead_ids)} stuck leads: {', '.join(lead_ids)}")
        return lead_ids

    def reset_stuck_leads(self) -> dict:
        lead_ids = self.run_recovery()
        return {"reset_count": len(lead_ids), "lead_ids": lead_ids}

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        return {
            "running": self.running,
            "active_count": len(self.working_set),
            "concurrency_limit": self.working_set.limit,
            "tick_interval": self.settings.tick_interval_seconds,
            "ring_timeout": self.settings.ring_timeout_seconds,
            "recovery_interval": self.settings.recovery_interval_seconds,
            "gateway": self.gateway.name,
        }

    def get_active_calls(self, now: Optional[datetime] = None) -> List[dict]:
        now = now or utcnow()
        return [
            {
                "lead_id": entry.lead_id,
                "agent_id": entry.agent_id,
                "call_attempt_id": entry.call_attempt_id,
                "started_at": entry.started_at,
                "elapsed_seconds": entry.elapsed_seconds(now),
            }
            for entry in self.working_set.snapshot()
        ]

    def get_stats(self) -> dict:
        """Get dispatcher statistics."""
        stats = {
            "running": self.running,
            "calls_placed": self._calls_placed,
            "placement_failures": self._placement_failures,
            "leads_recovered": self._leads_recovered,
            "in_flight": len(self.working_set),
        }
        if self.publisher:
            stats["events"] = self.publisher.get_stats()
        return stats


def main():
    """Entry point: serve the API with the dispatcher running in-process."""
    import uvicorn

    load_dotenv()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    uvicorn.run("leaddialer.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
