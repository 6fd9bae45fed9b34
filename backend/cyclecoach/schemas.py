"""Pydantic schemas for API request/response validation."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime, date

from cyclecoach.models.enums import (
    CycleRegularity,
    RaceCompletionStatus,
    TrainingStage,
)


# ============== Runner Schemas ==============

class RunnerBase(BaseModel):
    name: Optional[str] = None
    fitness_level: str = "intermediate"
    typical_weekly_km: Optional[float] = Field(None, ge=0)
    cycle_anchor: Optional[date] = None
    cycle_length: Optional[int] = None
    cycle_regularity: CycleRegularity = CycleRegularity.REGULAR


class RunnerCreate(RunnerBase):
    user_ref: Optional[str] = None


class RunnerUpdate(BaseModel):
    name: Optional[str] = None
    fitness_level: Optional[str] = None
    typical_weekly_km: Optional[float] = Field(None, ge=0)
    cycle_anchor: Optional[date] = None
    cycle_length: Optional[int] = None
    cycle_regularity: Optional[CycleRegularity] = None


class RunnerResponse(RunnerBase):
    id: str
    user_ref: Optional[str] = None
    cycle_regularity: str
    cycle_tracking_enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ============== Cycle Schemas ==============

class CyclePositionResponse(BaseModel):
    tracking_enabled: bool
    as_of: date
    phase: Optional[str] = None
    day_in_cycle: Optional[int] = None
    cycle_length: Optional[int] = None
    menstruation_day: Optional[int] = None
    next_period_start: Optional[date] = None
    days_until_next_period: Optional[int] = None
    phase_ranges: Optional[Dict[str, List[int]]] = None
    phase_description: Optional[str] = None
    phase_guidance: Optional[str] = None


class PeriodReport(BaseModel):
    start_date: date


class CycleLogResponse(BaseModel):
    id: str
    period_start: date
    reported_at: datetime
    predicted_start: Optional[date] = None
    days_difference: Optional[int] = None
    prediction_accurate: bool
    observed_cycle_length: Optional[int] = None
    triggered_recalculation: bool
    affected_plan_id: Optional[str] = None

    class Config:
        from_attributes = True


class PeriodReportResponse(BaseModel):
    message: str
    runner: RunnerResponse
    log: CycleLogResponse
    triggered_recalculation: bool
    days_difference: Optional[int] = None
    updated_position: Optional[CyclePositionResponse] = None


class CycleStatsResponse(BaseModel):
    total_cycles: int
    accurate_predictions: int
    accuracy_percentage: float
    average_cycle_length: Optional[float] = None


class CycleHistoryResponse(BaseModel):
    history: List[CycleLogResponse]
    stats: CycleStatsResponse


class CyclePhaseTipsResponse(BaseModel):
    phase: str
    description: str
    guidance: str
    nutrition: List[str]
    rest: List[str]
    injury_prevention: List[str]
    mood: List[str]


# ============== Race Schemas ==============

class RaceBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    race_date: date
    distance_km: Optional[float] = Field(None, gt=0)
    distance_type: str = "custom"  # 5k, 10k, half, marathon, custom
    location: Optional[str] = None
    goal_time_seconds: Optional[int] = Field(None, gt=0)
    training_start_date: Optional[date] = None


class RaceCreate(RaceBase):
    pass


class RaceResponse(RaceBase):
    id: str
    runner_id: str
    distance_km: float
    goal_time_formatted: Optional[str] = None
    completion_status: str
    result_time_seconds: Optional[int] = None
    result_logged_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RaceResultCreate(BaseModel):
    completion_status: RaceCompletionStatus
    result_time_seconds: Optional[int] = Field(None, gt=0)


class RaceResultResponse(BaseModel):
    race: RaceResponse
    plan_completed: bool
    message: str


# ============== Plan & Session Schemas ==============

class PlanCreate(BaseModel):
    race_id: str


class SessionResponse(BaseModel):
    id: str
    plan_id: str
    scheduled_date: date
    week_number: Optional[int] = None
    session_name: str
    workout_type: str
    description: Optional[str] = None
    target_distance_km: Optional[float] = None
    target_duration_minutes: Optional[int] = None
    intensity: Optional[str] = None
    cycle_phase: Optional[str] = None  # Frozen at generation time
    phase_guidance: Optional[str] = None
    training_stage: Optional[TrainingStage] = None
    completed_at: Optional[datetime] = None
    is_completed: bool = False
    is_skipped: bool = False
    skip_reason: Optional[str] = None
    actual_distance_km: Optional[float] = None
    actual_duration_minutes: Optional[int] = None
    rpe: Optional[int] = None
    user_notes: Optional[str] = None
    deviation_severity: Optional[str] = None
    was_modified: bool = False
    is_recently_updated: bool = False

    class Config:
        from_attributes = True


class PlanResponse(BaseModel):
    id: str
    runner_id: str
    race_id: str
    race_name: str
    race_date: date
    name: str
    status: str
    generation_source: Optional[str] = None
    rationale: Optional[str] = None
    start_date: date
    end_date: date
    training_days_per_week: Optional[int] = None
    long_run_day: Optional[int] = None
    current_stage: Optional[TrainingStage] = None
    recalculation_state: str
    pending_confirmation: bool
    pending_trigger_reason: Optional[str] = None
    last_recalculated_at: Optional[datetime] = None
    last_recalculation_summary: Optional[str] = None
    summary_viewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    sessions: List[SessionResponse] = []

    class Config:
        from_attributes = True


class PlanStatusResponse(BaseModel):
    id: str
    status: str
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PlanSummaryResponse(BaseModel):
    plan_id: str
    plan_name: str
    race_name: str
    race_date: date
    days_until_race: int
    current_stage: Optional[TrainingStage] = None
    total_sessions: int
    completed_sessions: int
    skipped_sessions: int
    today_session: Optional[SessionResponse] = None
    next_session: Optional[SessionResponse] = None
    current_cycle_phase: Optional[str] = None
    pending_confirmation: bool
    pending_trigger_reason: Optional[str] = None
    recalculation_status: str
    last_recalculated_at: Optional[datetime] = None
    latest_recalculation_summary: Optional[str] = None

    class Config:
        from_attributes = True


class StageInfoResponse(BaseModel):
    stage: str
    name: str
    tagline: str
    focus: str
    what_to_expect: str
    tip: str


# ============== Session Outcome Schemas ==============

class SessionCompletion(BaseModel):
    actual_distance_km: Optional[float] = Field(None, ge=0)
    actual_duration_minutes: Optional[int] = Field(None, ge=0)
    rpe: Optional[int] = Field(None, ge=1, le=10)
    user_notes: Optional[str] = Field(None, max_length=2000)


class SessionSkip(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DeviationResponse(BaseModel):
    severity: str
    action: str
    requires_confirmation: bool
    consecutive_off_track: int
    off_track_share: float
    reasons: List[str] = []


class SessionOutcomeResponse(BaseModel):
    session: SessionResponse
    deviation: DeviationResponse
    recalculation_requested: bool
    auto_dispatched: bool


# ============== Recalculation Schemas ==============

class RecalculationStatusResponse(BaseModel):
    plan_id: str
    state: str  # idle, pending_confirmation, dispatched
    job_status: str  # in_flight, idle, unknown
    pending_confirmation: bool
    pending_trigger_reason: Optional[str] = None
    confirmation_requested_at: Optional[datetime] = None
    last_recalculation_requested_at: Optional[datetime] = None
    last_recalculated_at: Optional[datetime] = None


class RecalculationActionResponse(BaseModel):
    plan_id: str
    state: str
    message: str


# ============== Adaptation History Schemas ==============

class SessionChangeResponse(BaseModel):
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
    has_changes: bool


class AdaptationHistoryResponse(BaseModel):
    id: str
    plan_id: str
    status: str
    adapted_at: datetime
    viewed_at: Optional[datetime] = None
    summary: str
    trigger_reason: str
    sessions_affected_count: int
    changes: List[SessionChangeResponse] = []
    error_message: Optional[str] = None


# ============== Errors ==============

class ErrorResponse(BaseModel):
    detail: str
    error_code: str
