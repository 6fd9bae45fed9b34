"""
Periodization stage calculator.

A date's stage depends only on how far it sits inside the plan window:

    elapsed fraction < 0.25  -> Base
                     < 0.60  -> Build
                     < 0.85  -> Peak
                     else    -> Taper

A date exactly on a threshold belongs to the later stage. The thresholds are
fixed for every plan so the progress bar in the app and the stage returned by
the API always agree. Fractions are compared exactly, never as floats.
"""

from datetime import date
from fractions import Fraction
from typing import Dict, Optional

from cyclecoach.models.enums import TrainingStage

STAGE_THRESHOLDS = (
    (Fraction(1, 4), TrainingStage.BASE),
    (Fraction(3, 5), TrainingStage.BUILD),
    (Fraction(17, 20), TrainingStage.PEAK),
)


def elapsed_fraction(target: date, start: date, end: date) -> Fraction:
    """Share of the plan window elapsed at the target date, clamped to [0, 1]."""
    total_days = (end - start).days
    if total_days <= 0:
        return Fraction(1)
    fraction = Fraction((target - start).days, total_days)
    return min(max(fraction, Fraction(0)), Fraction(1))


def calculate_stage(target: date, start: date, end: date) -> Optional[TrainingStage]:
    """Stage for a date, or None when it falls outside [start, end]."""
    if target < start or target > end:
        return None
    fraction = elapsed_fraction(target, start, end)
    for threshold, stage in STAGE_THRESHOLDS:
        if fraction < threshold:
            return stage
    return TrainingStage.TAPER


STAGE_INFO: Dict[TrainingStage, Dict[str, str]] = {
    TrainingStage.BASE: {
        "name": "Base",
        "tagline": "Laying the foundation",
        "focus": "Easy conversational running and gradual weekly volume increases.",
        "what_to_expect": "Most runs feel comfortable. Consistency matters more than speed.",
        "tip": "Keep easy days easy so the harder weeks have something to build on.",
    },
    TrainingStage.BUILD: {
        "name": "Build",
        "tagline": "Adding race-specific work",
        "focus": "Tempo and interval sessions alongside longer long runs.",
        "what_to_expect": "Workouts start to bite. Recovery between hard days becomes important.",
        "tip": "Fuel the quality sessions and protect your sleep.",
    },
    TrainingStage.PEAK: {
        "name": "Peak",
        "tagline": "Highest load of the plan",
        "focus": "Race-pace efforts and long runs at goal effort.",
        "what_to_expect": "This is the hardest stretch and fatigue is normal.",
        "tip": "Trust the plan. Recovery is part of the work.",
    },
    TrainingStage.TAPER: {
        "name": "Taper",
        "tagline": "Sharpening for race day",
        "focus": "Reduced volume with short touches of intensity.",
        "what_to_expect": "Legs may feel restless or heavy while fitness consolidates.",
        "tip": "Resist adding extra miles. Focus on rest and race logistics.",
    },
}


def stage_info(stage: TrainingStage) -> Dict[str, str]:
    """Static descriptive content for a stage."""
    return {"stage": stage.value, **STAGE_INFO[stage]}
