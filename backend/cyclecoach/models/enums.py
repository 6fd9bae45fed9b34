"""Enumerations shared by models, services and schemas.

Values are stored as plain strings so rows stay readable in SQL.
"""

import enum


class CycleRegularity(str, enum.Enum):
    REGULAR = "regular"
    IRREGULAR = "irregular"
    PREFER_NOT_TO_SHARE = "prefer_not_to_share"
    DO_NOT_TRACK = "do_not_track"


class CyclePhase(str, enum.Enum):
    MENSTRUAL = "menstrual"    # Period, lower energy
    FOLLICULAR = "follicular"  # Rising energy
    OVULATORY = "ovulatory"    # Peak performance window
    LUTEAL = "luteal"          # Declining energy, more recovery


class TrainingStage(str, enum.Enum):
    BASE = "base"
    BUILD = "build"
    PEAK = "peak"
    TAPER = "taper"


class PlanStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class WorkoutType(str, enum.Enum):
    EASY = "easy"
    LONG = "long"
    TEMPO = "tempo"
    INTERVAL = "interval"
    REST = "rest"


class IntensityLevel(str, enum.Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class RaceCompletionStatus(str, enum.Enum):
    NOT_ATTEMPTED = "not_attempted"
    COMPLETED = "completed"
    DNS = "dns"
    DNF = "dnf"


class AdaptationStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TriggerKind(str, enum.Enum):
    DEVIATION = "deviation"      # Training outcomes drifted from plan
    CYCLE_SHIFT = "cycle_shift"  # Reported period start missed the prediction
