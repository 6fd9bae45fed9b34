"""
Session outcome recording and deviation classification.

Recording an outcome persists it on the session, then classifies how far the
runner has drifted from the plan:

- no action: the session was on target
- silent log: a one-off or minor deviation, stored but not acted on
- recalculation candidate: a sustained deviation (several off-track sessions
  in a row, a large share of the recent window off track, or an effort rating
  far outside the planned band)

Only sessions logged since the last finished adaptation or declined proposal
make up the trend window.

Candidates are handed to the RecalculationCoordinator. Only severe streaks on a
plan with nothing awaiting confirmation are dispatched without asking.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from cyclecoach.clock import Clock, get_clock
from cyclecoach.config import Settings, get_settings
from cyclecoach.exceptions import ConflictError, JobDispatchError, NotFoundError, ValidationError
from cyclecoach.models import TrainingPlan, TrainingSession
from cyclecoach.models.enums import IntensityLevel, PlanStatus
from cyclecoach.services.recalculation_service import DEFAULT_TRIGGER_REASON, RecalculationCoordinator

logger = logging.getLogger(__name__)

# Planned intensity -> acceptable RPE range (1-10 scale)
EFFORT_BANDS = {
    IntensityLevel.LOW.value: (1, 4),
    IntensityLevel.MODERATE.value: (4, 7),
    IntensityLevel.HIGH.value: (7, 10),
}


class DeviationSeverity(str, Enum):
    NONE = "none"
    MINOR = "minor"
    SIGNIFICANT = "significant"
    SEVERE = "severe"


class DeviationAction(str, Enum):
    NO_ACTION = "no_action"
    SILENT_LOG = "silent_log"
    RECALCULATION_CANDIDATE = "recalculation_candidate"


@dataclass(frozen=True)
class DeviationThresholds:
    window_size: int = 7
    min_sessions: int = 3
    minor_ratio: float = 0.10
    significant_ratio: float = 0.20
    effort_tolerance: int = 2
    consecutive_for_candidate: int = 2
    share_for_candidate: float = 0.5
    consecutive_for_severe: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeviationThresholds":
        return cls(
            window_size=settings.deviation_window_size,
            min_sessions=settings.deviation_min_sessions,
            minor_ratio=settings.minor_deviation_ratio,
            significant_ratio=settings.significant_deviation_ratio,
            effort_tolerance=settings.effort_band_tolerance,
            consecutive_for_candidate=settings.consecutive_off_track_for_candidate,
            share_for_candidate=settings.off_track_share_for_candidate,
            consecutive_for_severe=settings.consecutive_off_track_for_severe,
        )


@dataclass
class SessionDeviation:
    off_track: bool = False
    minor: bool = False
    effort_far_off: bool = False
    completion_ratio: Optional[float] = None
    reasons: List[str] = field(default_factory=list)


@dataclass
class DeviationAssessment:
    severity: DeviationSeverity
    action: DeviationAction
    requires_confirmation: bool
    consecutive_off_track: int = 0
    off_track_share: float = 0.0
    window_size: int = 0
    reasons: List[str] = field(default_factory=list)

    @property
    def is_candidate(self) -> bool:
        return self.action == DeviationAction.RECALCULATION_CANDIDATE


@dataclass
class OutcomeResult:
    session: TrainingSession
    assessment: DeviationAssessment
    recalculation_requested: bool = False
    auto_dispatched: bool = False
    job_token: Optional[str] = None


def completion_ratio(session: TrainingSession) -> Optional[float]:
    """Actual over planned distance, falling back to duration."""
    if session.target_distance_km and session.actual_distance_km is not None:
        return session.actual_distance_km / session.target_distance_km
    if session.target_duration_minutes and session.actual_duration_minutes is not None:
        return session.actual_duration_minutes / session.target_duration_minutes
    return None


def effort_distance(intensity: Optional[str], rpe: Optional[int]) -> int:
    """RPE points outside the planned intensity band (0 when inside)."""
    if rpe is None or intensity not in EFFORT_BANDS:
        return 0
    low, high = EFFORT_BANDS[intensity]
    return max(low - rpe, rpe - high, 0)


def trend_window_start(plan: TrainingPlan) -> Optional[datetime]:
    """
    Sessions logged at or before this instant no longer count toward the trend.

    The window restarts after a finished adaptation pass and after a declined
    proposal, so the deviations behind either are not raised a second time.
    """
    marks = [plan.last_recalculated_at]
    if plan.confirmation_accepted is False:
        marks.append(plan.confirmation_responded_at)
    marks = [m for m in marks if m is not None]
    return max(marks) if marks else None


def evaluate_session(session: TrainingSession, thresholds: DeviationThresholds) -> SessionDeviation:
    """Compare one logged session against its own targets."""
    result = SessionDeviation()
    if session.is_skipped:
        result.off_track = True
        result.reasons.append("skipped")
        return result

    ratio = completion_ratio(session)
    result.completion_ratio = ratio
    if ratio is not None:
        drift = abs(ratio - 1)
        direction = "under" if ratio < 1 else "over"
        if drift > thresholds.significant_ratio:
            result.off_track = True
            result.reasons.append(f"{round(drift * 100)}% {direction} target")
        elif drift > thresholds.minor_ratio:
            result.minor = True
            result.reasons.append(f"{round(drift * 100)}% {direction} target")

    if effort_distance(session.intensity, session.rpe) > thresholds.effort_tolerance:
        result.off_track = True
        result.effort_far_off = True
        result.reasons.append(f"effort {session.rpe}/10 far outside planned {session.intensity} intensity")

    return result


def classify_deviation(
    current: TrainingSession,
    recent: List[TrainingSession],
    thresholds: DeviationThresholds,
    pending_confirmation: bool = False,
) -> DeviationAssessment:
    """
    Classify a newly logged session against the recent trend.

    ``recent`` holds the plan's logged sessions newest first and includes
    ``current``; only the first ``window_size`` are considered.
    """
    window = recent[: thresholds.window_size]
    current_deviation = evaluate_session(current, thresholds)
    evaluations = [evaluate_session(s, thresholds) for s in window]

    consecutive = 0
    for evaluation in evaluations:
        if not evaluation.off_track:
            break
        consecutive += 1
    off_track = sum(1 for e in evaluations if e.off_track)
    share = off_track / len(window) if window else 0.0

    reasons = list(current_deviation.reasons)
    enough_history = len(window) >= thresholds.min_sessions

    severe = enough_history and consecutive >= thresholds.consecutive_for_severe
    sustained = enough_history and (
        consecutive >= thresholds.consecutive_for_candidate
        or share >= thresholds.share_for_candidate
    )

    if severe or sustained or current_deviation.effort_far_off:
        severity = DeviationSeverity.SEVERE if severe else DeviationSeverity.SIGNIFICANT
        action = DeviationAction.RECALCULATION_CANDIDATE
        if consecutive >= 2:
            reasons.append(f"{consecutive} consecutive sessions off track")
        if sustained and share >= thresholds.share_for_candidate:
            reasons.append(f"{off_track} of last {len(window)} sessions off track")
    elif current_deviation.off_track or current_deviation.minor:
        severity = DeviationSeverity.MINOR
        action = DeviationAction.SILENT_LOG
    else:
        severity = DeviationSeverity.NONE
        action = DeviationAction.NO_ACTION

    requires_confirmation = not (severity == DeviationSeverity.SEVERE and not pending_confirmation)

    return DeviationAssessment(
        severity=severity,
        action=action,
        requires_confirmation=requires_confirmation if action == DeviationAction.RECALCULATION_CANDIDATE else False,
        consecutive_off_track=consecutive,
        off_track_share=round(share, 2),
        window_size=len(window),
        reasons=reasons,
    )


class SessionOutcomeEvaluator:
    """Records completions and skips and decides whether re-planning should start."""

    def __init__(
        self,
        db: Session,
        coordinator: RecalculationCoordinator,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.coordinator = coordinator
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.thresholds = DeviationThresholds.from_settings(self.settings)

    def record_completion(
        self,
        session_id: str,
        runner_id: str,
        actual_distance_km: Optional[float] = None,
        actual_duration_minutes: Optional[int] = None,
        rpe: Optional[int] = None,
        user_notes: Optional[str] = None,
    ) -> OutcomeResult:
        """Persist a completed session and classify the deviation."""
        if rpe is not None and not 1 <= rpe <= 10:
            raise ValidationError("RPE must be between 1 and 10", field="rpe")
        if actual_distance_km is not None and actual_distance_km < 0:
            raise ValidationError("Distance cannot be negative", field="actual_distance_km")
        if actual_duration_minutes is not None and actual_duration_minutes < 0:
            raise ValidationError("Duration cannot be negative", field="actual_duration_minutes")

        session, plan = self._load_owned_session(session_id, runner_id)
        logger.info("Completing session %s for runner %s", session_id, runner_id)

        now = self.clock.now()
        session.completed_at = now
        session.is_skipped = False
        session.skip_reason = None
        session.actual_distance_km = actual_distance_km
        session.actual_duration_minutes = actual_duration_minutes
        session.rpe = rpe
        session.user_notes = user_notes
        session.updated_at = now

        return self._classify_and_dispatch(session, plan)

    def record_skip(self, session_id: str, runner_id: str, reason: Optional[str] = None) -> OutcomeResult:
        """Persist a skipped session and classify the deviation."""
        session, plan = self._load_owned_session(session_id, runner_id)
        logger.info("Skipping session %s for runner %s", session_id, runner_id)

        now = self.clock.now()
        session.is_skipped = True
        session.skip_reason = reason
        session.completed_at = now  # Still track when it was skipped
        session.actual_distance_km = None
        session.actual_duration_minutes = None
        session.rpe = None
        session.updated_at = now

        return self._classify_and_dispatch(session, plan)

    def _load_owned_session(self, session_id: str, runner_id: str) -> Tuple[TrainingSession, TrainingPlan]:
        row = (
            self.db.query(TrainingSession, TrainingPlan)
            .join(TrainingPlan, TrainingSession.plan_id == TrainingPlan.id)
            .filter(
                TrainingSession.id == session_id,
                TrainingPlan.runner_id == runner_id,
                TrainingPlan.status == PlanStatus.ACTIVE.value,
            )
            .first()
        )
        if not row:
            raise NotFoundError("Session")
        return row

    def _recent_logged(self, plan: TrainingPlan, current: TrainingSession) -> List[TrainingSession]:
        query = self.db.query(TrainingSession).filter(
            TrainingSession.plan_id == plan.id,
            (TrainingSession.completed_at.isnot(None)) | (TrainingSession.is_skipped.is_(True)),
        )
        start = trend_window_start(plan)
        if start is not None:
            query = query.filter((TrainingSession.completed_at > start) | (TrainingSession.id == current.id))
        return (
            query.order_by(TrainingSession.scheduled_date.desc())
            .limit(self.thresholds.window_size)
            .all()
        )

    def _classify_and_dispatch(self, session: TrainingSession, plan: TrainingPlan) -> OutcomeResult:
        self.db.flush()
        assessment = classify_deviation(
            session,
            self._recent_logged(plan, session),
            self.thresholds,
            pending_confirmation=bool(plan.pending_confirmation),
        )
        session.deviation_severity = assessment.severity.value
        self.db.commit()
        self.db.refresh(session)

        logger.info(
            "Session %s classified as %s (%s); %d consecutive off track, %.0f%% of %d",
            session.id, assessment.action.value, assessment.severity.value,
            assessment.consecutive_off_track, assessment.off_track_share * 100, assessment.window_size,
        )

        result = OutcomeResult(session=session, assessment=assessment)
        if not assessment.is_candidate:
            return result

        reason = DEFAULT_TRIGGER_REASON
        if assessment.reasons:
            reason = f"{DEFAULT_TRIGGER_REASON}: {'; '.join(assessment.reasons)}"
        try:
            request = self.coordinator.request_recalculation(
                plan.id, auto_dispatch=not assessment.requires_confirmation, trigger_reason=reason
            )
        except ConflictError as e:
            # An adaptation is already running; it will see this outcome
            logger.info("Recalculation for plan %s not requested: %s", plan.id, e.detail)
            return result
        except JobDispatchError as e:
            # The outcome is already saved; the next deviation will try again
            logger.warning("Recalculation for plan %s not dispatched: %s", plan.id, e.detail)
            return result

        result.recalculation_requested = True
        result.auto_dispatched = request.job_token is not None
        result.job_token = request.job_token
        return result
