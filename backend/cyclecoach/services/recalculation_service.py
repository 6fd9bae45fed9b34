"""
Recalculation coordination for a training plan.

State lives on the plan row (``pending_confirmation``, ``last_job_ref``,
``last_recalculated_at``) and moves through:

    Idle -> PendingConfirmation -> (confirm) -> Dispatched -> (worker done) -> Idle
    PendingConfirmation -> (decline) -> Idle
    Idle -> (auto-dispatch) -> Dispatched -> Idle

Every write to those fields is a compare-and-swap on ``recalc_version`` so two
requests can never both see "no job in flight" and both dispatch. A lost swap is
retried once against fresh state, then reported as a ConflictError.

A Dispatched plan whose job died without recording a result (worker killed,
message lost) is released before the next dispatch: the job store reports it
finished, or it has sat queued longer than ``stale_job_minutes``.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import ConflictError, JobDispatchError, NotFoundError
from cyclecoach.models import TrainingPlan
from cyclecoach.models.enums import PlanStatus, TriggerKind
from cyclecoach.services.adaptation_history_service import AdaptationHistoryRecorder
from cyclecoach.services.job_queue import ADAPT_PLAN_JOB, JobQueue, JobState

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_REASON = "Training pattern deviation detected"

# One pool for every job-store poll in the process
_status_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="job-status")


class RecalculationState(str, Enum):
    IDLE = "idle"
    PENDING_CONFIRMATION = "pending_confirmation"
    DISPATCHED = "dispatched"


class JobActivity(str, Enum):
    IN_FLIGHT = "in_flight"
    IDLE = "idle"
    UNKNOWN = "unknown"


@dataclass
class RecalculationRequest:
    plan_id: str
    state: RecalculationState
    job_token: Optional[str] = None


class _LostRace(Exception):
    pass


def recalculation_state(plan: TrainingPlan) -> RecalculationState:
    if plan.last_job_ref:
        return RecalculationState.DISPATCHED
    if plan.pending_confirmation:
        return RecalculationState.PENDING_CONFIRMATION
    return RecalculationState.IDLE


class RecalculationCoordinator:
    """Small state machine guarding one in-flight adaptation job per plan."""

    def __init__(
        self,
        db: Session,
        job_queue: JobQueue,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.job_queue = job_queue
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()

    # ---------- Commands ----------

    def request_recalculation(
        self,
        plan_id: str,
        auto_dispatch: bool,
        trigger_reason: str = DEFAULT_TRIGGER_REASON,
        runner_id: Optional[str] = None,
        trigger_kind: TriggerKind = TriggerKind.DEVIATION,
    ) -> RecalculationRequest:
        """
        Propose or start an adaptation pass.

        With ``auto_dispatch`` the job is enqueued right away; otherwise the plan
        is flagged as awaiting the runner's confirmation. Only deviation passes
        are ever proposed, so ``trigger_kind`` matters for auto-dispatch only.

        Raises:
            ConflictError: a job is already in flight, or the plan is not active
        """

        def attempt(plan: TrainingPlan) -> RecalculationRequest:
            self._require_dispatchable(plan)
            if auto_dispatch:
                token = self._dispatch(plan, trigger_reason, trigger_kind=trigger_kind)
                return RecalculationRequest(plan.id, RecalculationState.DISPATCHED, token)

            if plan.pending_confirmation:
                # Already proposed; the runner still has to answer the first one
                return RecalculationRequest(plan.id, RecalculationState.PENDING_CONFIRMATION)

            self._swap(plan, {
                "pending_confirmation": True,
                "confirmation_requested_at": self.clock.now(),
                "confirmation_responded_at": None,
                "confirmation_accepted": None,
                "pending_trigger_reason": trigger_reason[:500],
            })
            self.db.commit()
            logger.info("Recalculation for plan %s awaiting confirmation: %s", plan.id, trigger_reason)
            return RecalculationRequest(plan.id, RecalculationState.PENDING_CONFIRMATION)

        return self._with_retry(plan_id, runner_id, attempt, reclaim=True)

    def confirm(self, plan_id: str, runner_id: Optional[str] = None) -> RecalculationRequest:
        """Accept a pending proposal and dispatch the adaptation job."""

        def attempt(plan: TrainingPlan) -> RecalculationRequest:
            if not plan.pending_confirmation:
                raise ConflictError("No plan recalculation is awaiting confirmation")
            self._require_dispatchable(plan)
            reason = plan.pending_trigger_reason or DEFAULT_TRIGGER_REASON
            token = self._dispatch(plan, reason, {
                "confirmation_responded_at": self.clock.now(),
                "confirmation_accepted": True,
            })
            logger.info("Runner confirmed recalculation for plan %s", plan.id)
            return RecalculationRequest(plan.id, RecalculationState.DISPATCHED, token)

        return self._with_retry(plan_id, runner_id, attempt, reclaim=True)

    def decline(self, plan_id: str, runner_id: Optional[str] = None) -> RecalculationRequest:
        """Drop a pending proposal. Nothing is enqueued and no history is written."""

        def attempt(plan: TrainingPlan) -> RecalculationRequest:
            if not plan.pending_confirmation:
                raise ConflictError("No plan recalculation is awaiting confirmation")
            self._swap(plan, {
                "pending_confirmation": False,
                "pending_trigger_reason": None,
                "confirmation_responded_at": self.clock.now(),
                "confirmation_accepted": False,
            })
            self.db.commit()
            logger.info("Runner declined recalculation for plan %s", plan.id)
            return RecalculationRequest(plan.id, recalculation_state(plan))

        return self._with_retry(plan_id, runner_id, attempt)

    # ---------- Queries ----------

    def poll_status(self, plan_id: str, runner_id: Optional[str] = None) -> JobActivity:
        """
        Ask the job store whether the plan's last job is still running.

        Never raises for job-store trouble: errors and slow answers come back as
        ``JobActivity.UNKNOWN`` so read paths can still render.
        """
        plan = self._load_plan(plan_id, runner_id)
        token = plan.last_job_ref
        if not token:
            return JobActivity.IDLE

        state = self._job_state(token)
        if state in (JobState.QUEUED, JobState.RUNNING):
            return JobActivity.IN_FLIGHT
        if state == JobState.UNKNOWN:
            return JobActivity.UNKNOWN
        return JobActivity.IDLE

    def get_state(self, plan_id: str, runner_id: Optional[str] = None) -> RecalculationState:
        return recalculation_state(self._load_plan(plan_id, runner_id))

    # ---------- Internals ----------

    def _load_plan(self, plan_id: str, runner_id: Optional[str]) -> TrainingPlan:
        query = self.db.query(TrainingPlan).populate_existing().filter(TrainingPlan.id == plan_id)
        if runner_id is not None:
            query = query.filter(TrainingPlan.runner_id == runner_id)
        plan = query.first()
        if not plan:
            raise NotFoundError("Training plan")
        return plan

    def _with_retry(
        self,
        plan_id: str,
        runner_id: Optional[str],
        attempt: Callable[[TrainingPlan], RecalculationRequest],
        reclaim: bool = False,
    ) -> RecalculationRequest:
        for n in range(2):
            plan = self._load_plan(plan_id, runner_id)
            if reclaim and plan.last_job_ref and self._reclaim_dead_job(plan):
                plan = self._load_plan(plan_id, runner_id)
            try:
                return attempt(plan)
            except _LostRace:
                self.db.rollback()
                logger.warning("Recalculation write on plan %s lost a race (attempt %d)", plan_id, n + 1)
        raise ConflictError("The plan was updated at the same time. Please try again.")

    def _job_state(self, token: str) -> JobState:
        """Bounded job-store lookup; trouble of any kind reads as UNKNOWN."""
        timeout = self.settings.job_status_timeout_seconds
        future = _status_pool.submit(self.job_queue.get_status, token)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            logger.warning("Job status poll for %s timed out (%ss)", token, timeout)
            future.cancel()
            return JobState.UNKNOWN
        except Exception as e:
            logger.warning("Job status poll for %s failed: %s", token, e)
            return JobState.UNKNOWN

    def _reclaim_dead_job(self, plan: TrainingPlan) -> bool:
        """
        Release the slot held by a job that will never record its own result.

        The release is written as a failed history entry under the job's token,
        so a late delivery of the same job becomes a no-op. Running, fresh
        queued and unknown jobs keep the slot.
        """
        token = plan.last_job_ref
        state = self._job_state(token)
        if state in (JobState.SUCCEEDED, JobState.FAILED):
            reason = f"Job {token} ended ({state.value}) without recording a result"
        elif state == JobState.QUEUED and self._is_stale(plan):
            reason = f"Job {token} was never picked up"
        else:
            return False

        AdaptationHistoryRecorder(self.db, self.clock).record_failed_adaptation(
            plan.id, reason, job_token=token
        )
        logger.warning("Released recalculation slot on plan %s: %s", plan.id, reason)
        return True

    def _is_stale(self, plan: TrainingPlan) -> bool:
        requested = plan.last_recalculation_requested_at
        if requested is None:
            return False
        return self.clock.now() - requested > timedelta(minutes=self.settings.stale_job_minutes)

    def _require_dispatchable(self, plan: TrainingPlan) -> None:
        if plan.status != PlanStatus.ACTIVE.value:
            raise ConflictError("Only an active plan can be recalculated")
        if plan.last_job_ref:
            raise ConflictError("A plan update is already in progress")

    def _swap(self, plan: TrainingPlan, values: Dict[str, Any], **conditions) -> None:
        """Conditional write on the plan row, keyed on the version we read."""
        statement = update(TrainingPlan).where(
            TrainingPlan.id == plan.id,
            TrainingPlan.recalc_version == plan.recalc_version,
        )
        for column, expected in conditions.items():
            statement = statement.where(getattr(TrainingPlan, column) == expected)
        values = dict(values, recalc_version=plan.recalc_version + 1, updated_at=self.clock.now())
        result = self.db.execute(statement.values(**values).execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise _LostRace()
        self.db.expire(plan)

    def _dispatch(
        self,
        plan: TrainingPlan,
        trigger_reason: str,
        extra: Optional[Dict[str, Any]] = None,
        trigger_kind: TriggerKind = TriggerKind.DEVIATION,
    ) -> str:
        plan_id = plan.id
        was_pending = bool(plan.pending_confirmation)
        token = self.job_queue.new_token()

        # Claim the slot before the broker sees the job
        values = {
            "last_job_ref": token,
            "pending_confirmation": False,
            "pending_trigger_reason": None,
            "last_recalculation_requested_at": self.clock.now(),
        }
        values.update(extra or {})
        self._swap(plan, values, last_job_ref=None)
        self.db.commit()

        try:
            self.job_queue.enqueue(
                ADAPT_PLAN_JOB,
                {"plan_id": plan_id, "trigger_reason": trigger_reason, "trigger_kind": trigger_kind.value},
                job_token=token,
            )
        except Exception as e:
            logger.error("Failed to enqueue adaptation for plan %s: %s", plan_id, e)
            self._release_claim(plan_id, token, was_pending, trigger_reason)
            raise JobDispatchError("Could not start the plan update. Please try again.") from e

        logger.info("Dispatched adaptation job %s for plan %s", token, plan_id)
        return token

    def _release_claim(self, plan_id: str, token: str, was_pending: bool, trigger_reason: str) -> None:
        self.db.rollback()
        self.db.execute(
            update(TrainingPlan)
            .where(TrainingPlan.id == plan_id, TrainingPlan.last_job_ref == token)
            .values(
                last_job_ref=None,
                pending_confirmation=was_pending,
                pending_trigger_reason=trigger_reason[:500] if was_pending else None,
                confirmation_responded_at=None,
                confirmation_accepted=None,
                recalc_version=TrainingPlan.recalc_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
