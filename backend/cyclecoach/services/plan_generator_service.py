"""Plan-content generation: session drafts for new plans and adapted targets for re-planning."""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import List, Dict, Any, Optional

from cyclecoach.models import Runner, Race, TrainingPlan, TrainingSession
from cyclecoach.models.enums import CyclePhase, IntensityLevel, TrainingStage, TriggerKind, WorkoutType
from cyclecoach.services import cycle_phase
from cyclecoach.services.periodization import calculate_stage

logger = logging.getLogger(__name__)


@dataclass
class PlanWindow:
    start_date: date
    end_date: date
    days_before_period: int = 3
    days_after_period: int = 2


@dataclass
class SessionDraft:
    """A session proposed by the generator, not yet persisted."""
    scheduled_date: date
    session_name: str
    workout_type: str
    intensity: str
    target_distance_km: Optional[float] = None
    target_duration_minutes: Optional[int] = None
    week_number: Optional[int] = None
    description: Optional[str] = None
    cycle_phase: Optional[str] = None
    phase_guidance: Optional[str] = None


@dataclass
class GeneratedPlan:
    name: str
    sessions: List[SessionDraft]
    training_days_per_week: int
    long_run_day: int
    generation_source: str = "rule_based"
    rationale: Optional[str] = None


@dataclass
class SessionChange:
    """Before/after targets of one session touched by an adaptation pass."""
    session_id: str
    scheduled_date: date
    session_name: str
    old_distance_km: Optional[float] = None
    old_duration_minutes: Optional[int] = None
    old_workout_type: Optional[str] = None
    old_intensity: Optional[str] = None
    new_distance_km: Optional[float] = None
    new_duration_minutes: Optional[int] = None
    new_workout_type: Optional[str] = None
    new_intensity: Optional[str] = None
    old_cycle_phase: Optional[str] = None
    new_cycle_phase: Optional[str] = None
    new_phase_guidance: Optional[str] = None

    def has_changes(self) -> bool:
        return (
            self.old_distance_km != self.new_distance_km
            or self.old_duration_minutes != self.new_duration_minutes
            or self.old_workout_type != self.new_workout_type
            or self.old_intensity != self.new_intensity
            or self.old_cycle_phase != self.new_cycle_phase
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scheduled_date"] = self.scheduled_date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionChange":
        values = dict(data)
        if isinstance(values.get("scheduled_date"), str):
            values["scheduled_date"] = date.fromisoformat(values["scheduled_date"])
        return cls(**{k: v for k, v in values.items() if k in cls.__dataclass_fields__})


@dataclass
class TriggerContext:
    """Why an adaptation pass runs and what the recent history looked like."""
    reason: str
    kind: TriggerKind = TriggerKind.DEVIATION
    logged_sessions: int = 0
    skipped_sessions: int = 0
    average_completion_ratio: Optional[float] = None
    average_rpe: Optional[float] = None
    notes: List[str] = field(default_factory=list)


@dataclass
class AdaptationResult:
    changes: List[SessionChange]
    summary_text: str


class PlanContentGenerator:
    """Contract for whatever produces workout content (rules, LLM, coach)."""

    def generate_sessions(self, runner: Runner, race: Race, window: PlanWindow) -> GeneratedPlan:
        raise NotImplementedError

    def adapt_sessions(
        self, plan: TrainingPlan, sessions: List[TrainingSession], context: TriggerContext
    ) -> AdaptationResult:
        raise NotImplementedError


class RuleBasedPlanGenerator(PlanContentGenerator):
    """Template generator shaping volume by periodization stage and cycle phase."""

    DEFAULT_WEEKLY_KM = {
        "beginner": 15,
        "intermediate": 25,
        "advanced": 40,
        "elite": 60,
    }

    TRAINING_DAYS = {
        "beginner": 3,
        "intermediate": 4,
        "advanced": 5,
        "elite": 6,
    }

    # Weekdays used for each training frequency (0=Mon); Sunday is the long run
    DAY_PATTERNS = {
        3: [1, 3, 6],
        4: [1, 2, 4, 6],
        5: [0, 1, 3, 4, 6],
        6: [0, 1, 2, 3, 4, 6],
    }
    LONG_RUN_DAY = 6

    # Pace relative to race pace, based on Jack Daniels' Running Formula
    PACE_ZONES = {
        "easy": 1.25,      # 25% slower than race pace
        "long": 1.20,      # 20% slower
        "tempo": 1.08,     # 8% slower (threshold)
        "interval": 0.95,  # 5% faster (VO2max)
    }
    DEFAULT_RACE_PACE = 330  # seconds per km when no goal time is set

    STAGE_VOLUME = {
        TrainingStage.BASE: 0.90,
        TrainingStage.BUILD: 1.05,
        TrainingStage.PEAK: 1.15,
        TrainingStage.TAPER: 0.65,
    }

    PHASE_GUIDANCE = {
        CyclePhase.MENSTRUAL: "Energy may be lower. Keep the effort honest and shorten the session if you need to.",
        CyclePhase.FOLLICULAR: "Rising energy makes this a good window for quality work.",
        CyclePhase.OVULATORY: "Strength and speed tend to peak. Warm up thoroughly.",
        CyclePhase.LUTEAL: "Perceived effort can run higher. Prioritise hydration and recovery.",
    }

    # Adaptation bounds
    MAX_REDUCTION = 0.30
    MAX_INCREASE = 0.10

    def generate_sessions(self, runner: Runner, race: Race, window: PlanWindow) -> GeneratedPlan:
        """Lay out sessions from the window start up to the day before the race."""
        level = (runner.fitness_level or "intermediate").lower()
        days_per_week = self.TRAINING_DAYS.get(level, 4)
        weekdays = self.DAY_PATTERNS[days_per_week]
        weekly_km = runner.typical_weekly_km or self.DEFAULT_WEEKLY_KM.get(level, 25)
        paces = self._calculate_target_paces(race)

        sessions = []
        current = window.start_date
        while current < window.end_date:
            if current.weekday() in weekdays:
                sessions.append(
                    self._create_session_for_day(
                        current, runner, window, weekdays, weekly_km, paces
                    )
                )
            current += timedelta(days=1)

        logger.info(
            "Generated %d sessions for race %s (%s to %s)",
            len(sessions), race.id, window.start_date, window.end_date,
        )

        return GeneratedPlan(
            name=f"{race.name} Training Plan",
            sessions=sessions,
            training_days_per_week=days_per_week,
            long_run_day=self.LONG_RUN_DAY,
            rationale=(
                f"{days_per_week} runs per week built from about {weekly_km:g} km/week, "
                f"shaped by stage and softened around predicted period starts."
            ),
        )

    def adapt_sessions(
        self, plan: TrainingPlan, sessions: List[TrainingSession], context: TriggerContext
    ) -> AdaptationResult:
        """Scale upcoming targets toward what the runner has actually been doing."""
        if context.kind == TriggerKind.CYCLE_SHIFT:
            return self._rephase_sessions(plan, sessions)

        factor = self._adaptation_factor(context)
        ease_intensity = factor < 1.0

        changes = []
        for session in sessions:
            change = self._unchanged(session)
            if session.workout_type != WorkoutType.REST.value:
                if session.target_distance_km is not None:
                    change.new_distance_km = round(session.target_distance_km * factor, 1)
                if session.target_duration_minutes is not None:
                    change.new_duration_minutes = int(round(session.target_duration_minutes * factor))
                if ease_intensity and session.intensity == IntensityLevel.HIGH.value:
                    change.new_intensity = IntensityLevel.MODERATE.value
            changes.append(change)

        touched = sum(1 for c in changes if c.has_changes())
        if factor < 1.0:
            summary = (
                f"Your last {context.logged_sessions} logged sessions ran below plan "
                f"({context.skipped_sessions} skipped), so the next {touched} sessions were eased "
                f"back by {round((1 - factor) * 100)}%."
            )
        elif factor > 1.0:
            summary = (
                f"You have been running ahead of plan, so the next {touched} sessions were "
                f"nudged up by {round((factor - 1) * 100)}%."
            )
        else:
            summary = "Your recent training matches the plan. Upcoming sessions are unchanged."

        return AdaptationResult(changes=changes, summary_text=summary)

    def _rephase_sessions(self, plan: TrainingPlan, sessions: List[TrainingSession]) -> AdaptationResult:
        """Re-snapshot cycle phases from the runner's updated cycle and soften the new reduction window."""
        runner = plan.runner
        changes = []
        for session in sessions:
            change = self._unchanged(session)
            position = cycle_phase.position_for_runner(runner, session.scheduled_date)
            if position is None:
                changes.append(change)
                continue

            change.new_cycle_phase = position.phase.value
            guidance = self.PHASE_GUIDANCE[position.phase]
            if session.intensity == IntensityLevel.HIGH.value and cycle_phase.in_intensity_reduction_window(
                session.scheduled_date, runner.cycle_anchor, runner.cycle_length,
                plan.days_before_period_to_reduce_intensity, plan.days_after_period_to_reduce_intensity,
                runner.cycle_regularity,
            ):
                change.new_intensity = IntensityLevel.MODERATE.value
                if session.target_distance_km is not None:
                    change.new_distance_km = round(session.target_distance_km * 0.9, 1)
                if session.target_duration_minutes is not None:
                    change.new_duration_minutes = int(round(session.target_duration_minutes * 0.9))
                guidance = "Intensity reduced around your predicted period start. " + guidance
            change.new_phase_guidance = guidance
            changes.append(change)

        touched = sum(1 for c in changes if c.has_changes())
        if touched:
            summary = (
                f"Your period started on a different day than predicted, so {touched} upcoming "
                f"sessions were re-aligned to your cycle."
            )
        else:
            summary = "Your upcoming sessions already match your updated cycle."
        return AdaptationResult(changes=changes, summary_text=summary)

    def _unchanged(self, session: TrainingSession) -> SessionChange:
        return SessionChange(
            session_id=session.id,
            scheduled_date=session.scheduled_date,
            session_name=session.session_name,
            old_distance_km=session.target_distance_km,
            old_duration_minutes=session.target_duration_minutes,
            old_workout_type=session.workout_type,
            old_intensity=session.intensity,
            new_distance_km=session.target_distance_km,
            new_duration_minutes=session.target_duration_minutes,
            new_workout_type=session.workout_type,
            new_intensity=session.intensity,
            old_cycle_phase=session.cycle_phase,
            new_cycle_phase=session.cycle_phase,
        )

    def _adaptation_factor(self, context: TriggerContext) -> float:
        if context.logged_sessions == 0:
            return 1.0
        skip_share = context.skipped_sessions / context.logged_sessions
        ratio = context.average_completion_ratio
        if ratio is None:
            ratio = 1.0 - skip_share
        else:
            # Skipped sessions count as zero completion
            ratio = ratio * (1 - skip_share)
        factor = min(max(ratio, 1 - self.MAX_REDUCTION), 1 + self.MAX_INCREASE)
        return round(factor, 2)

    def _calculate_target_paces(self, race: Race) -> Dict[str, int]:
        """Calculate target paces for different session types based on goal time."""
        if race.goal_time_seconds and race.distance_km:
            base_pace = int(race.goal_time_seconds / race.distance_km)
        else:
            base_pace = self.DEFAULT_RACE_PACE

        return {
            session_type: int(base_pace * multiplier)
            for session_type, multiplier in self.PACE_ZONES.items()
        }

    def _create_session_for_day(
        self, day: date, runner: Runner, window: PlanWindow,
        weekdays: List[int], weekly_km: float, paces: Dict[str, int]
    ) -> SessionDraft:
        """Create a session draft for one training day."""
        stage = calculate_stage(day, window.start_date, window.end_date) or TrainingStage.BASE
        week_number = (day - window.start_date).days // 7 + 1
        volume = weekly_km * self.STAGE_VOLUME[stage]
        if stage != TrainingStage.TAPER and week_number % 4 == 0:
            volume *= 0.8  # Recovery week

        quality_day = weekdays[0] if len(weekdays) > 1 else None
        if day.weekday() == self.LONG_RUN_DAY:
            workout_type, intensity, share = WorkoutType.LONG, IntensityLevel.MODERATE, 0.35
        elif day.weekday() == quality_day and stage in (TrainingStage.BUILD, TrainingStage.PEAK):
            if week_number % 2 == 0:
                workout_type = WorkoutType.TEMPO
            else:
                workout_type = WorkoutType.INTERVAL
            intensity, share = IntensityLevel.HIGH, 0.65 / (len(weekdays) - 1)
        else:
            workout_type, intensity = WorkoutType.EASY, IntensityLevel.LOW
            share = 0.65 / (len(weekdays) - 1)

        distance = round(volume * share, 1)

        phase = None
        guidance = None
        position = cycle_phase.position_for_runner(runner, day)
        if position is not None:
            phase = position.phase
            guidance = self.PHASE_GUIDANCE[phase]
            if cycle_phase.in_intensity_reduction_window(
                day, runner.cycle_anchor, runner.cycle_length,
                window.days_before_period, window.days_after_period,
                runner.cycle_regularity,
            ) and intensity == IntensityLevel.HIGH:
                intensity = IntensityLevel.MODERATE
                distance = round(distance * 0.9, 1)
                guidance = "Intensity reduced around your predicted period start. " + guidance

        duration = int(round(distance * paces.get(workout_type.value, paces["easy"]) / 60))

        return SessionDraft(
            scheduled_date=day,
            session_name=self._get_session_title(workout_type, week_number),
            workout_type=workout_type.value,
            intensity=intensity.value,
            target_distance_km=distance,
            target_duration_minutes=duration,
            week_number=week_number,
            description=self._get_session_description(workout_type, duration, paces.get(workout_type.value)),
            cycle_phase=phase.value if phase else None,
            phase_guidance=guidance,
        )

    def _format_pace(self, seconds_per_km: int) -> str:
        """Format pace as MM:SS/km."""
        if not seconds_per_km:
            return "N/A"
        minutes = seconds_per_km // 60
        seconds = seconds_per_km % 60
        return f"{minutes}:{seconds:02d}/km"

    def _get_session_title(self, workout_type: WorkoutType, week_num: int) -> str:
        titles = {
            WorkoutType.EASY: f"Easy Run - Week {week_num}",
            WorkoutType.LONG: f"Long Run - Week {week_num}",
            WorkoutType.TEMPO: f"Tempo Run - Week {week_num}",
            WorkoutType.INTERVAL: f"Intervals - Week {week_num}",
            WorkoutType.REST: f"Rest - Week {week_num}",
        }
        return titles[workout_type]

    def _get_session_description(
        self, workout_type: WorkoutType, duration: int, pace: Optional[int] = None
    ) -> str:
        pace_str = self._format_pace(pace) if pace else "a comfortable pace"
        descriptions = {
            WorkoutType.EASY: f"Easy {duration} min at {pace_str}. You should be able to hold a conversation.",
            WorkoutType.LONG: f"Long run of {duration} min at {pace_str}. Carry water if over 75 min.",
            WorkoutType.TEMPO: f"10 min warm-up, {max(duration - 20, 10)} min at {pace_str}, 10 min cool-down.",
            WorkoutType.INTERVAL: f"15 min warm-up, 1 km repeats at {pace_str} with 90 s jog recovery, 10 min cool-down.",
            WorkoutType.REST: "Full rest day. Light mobility if you like.",
        }
        return descriptions[workout_type]


def get_plan_generator() -> PlanContentGenerator:
    """Dependency returning the configured content generator."""
    return RuleBasedPlanGenerator()
