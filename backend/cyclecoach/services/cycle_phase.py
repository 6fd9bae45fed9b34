"""
Cycle phase calculator.

Pure functions: given a cycle anchor (first day of the last observed period)
and a cycle length, predict the phase and day-in-cycle for any calendar date.

Phase boundaries are fractions of a canonical 28-day cycle, scaled to the
runner's length and rounded half-up to whole days:

    Menstrual   day 1 .. round(5/28 * L)
    Follicular  next  .. round(14/28 * L)
    Ovulatory   next  .. round(17/28 * L)
    Luteal      next  .. L

For every length in 21..45 the four ranges are non-empty and partition [1, L].
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional, Tuple

from cyclecoach.exceptions import ValidationError
from cyclecoach.models.enums import CyclePhase, CycleRegularity
from cyclecoach.models.runner import MIN_CYCLE_LENGTH, MAX_CYCLE_LENGTH

CANONICAL_CYCLE_LENGTH = 28

# Last day of each phase in a 28-day cycle; luteal runs to the end
MENSTRUAL_END_DAY = 5
FOLLICULAR_END_DAY = 14
OVULATORY_END_DAY = 17


@dataclass(frozen=True)
class CyclePosition:
    """Where a date falls in the predicted cycle."""
    phase: CyclePhase
    day_in_cycle: int
    cycle_length: int
    menstruation_day: Optional[int] = None  # 1-based, only during the menstrual phase


def validate_cycle_length(cycle_length: int) -> int:
    """Reject lengths outside the supported 21-45 day range."""
    if cycle_length is None or not MIN_CYCLE_LENGTH <= cycle_length <= MAX_CYCLE_LENGTH:
        raise ValidationError(
            f"Cycle length must be between {MIN_CYCLE_LENGTH} and {MAX_CYCLE_LENGTH} days",
            field="cycle_length",
        )
    return cycle_length


def _scaled_day(canonical_day: int, cycle_length: int) -> int:
    # round(canonical_day / 28 * L) with halves rounded up, in integer arithmetic
    return (2 * canonical_day * cycle_length + CANONICAL_CYCLE_LENGTH) // (2 * CANONICAL_CYCLE_LENGTH)


def phase_boundaries(cycle_length: int) -> Tuple[int, int, int]:
    """Return the last day of the menstrual, follicular and ovulatory phases."""
    validate_cycle_length(cycle_length)
    return (
        _scaled_day(MENSTRUAL_END_DAY, cycle_length),
        _scaled_day(FOLLICULAR_END_DAY, cycle_length),
        _scaled_day(OVULATORY_END_DAY, cycle_length),
    )


def phase_ranges(cycle_length: int) -> Dict[CyclePhase, Tuple[int, int]]:
    """Inclusive (first_day, last_day) for each phase."""
    menstrual_end, follicular_end, ovulatory_end = phase_boundaries(cycle_length)
    return {
        CyclePhase.MENSTRUAL: (1, menstrual_end),
        CyclePhase.FOLLICULAR: (menstrual_end + 1, follicular_end),
        CyclePhase.OVULATORY: (follicular_end + 1, ovulatory_end),
        CyclePhase.LUTEAL: (ovulatory_end + 1, cycle_length),
    }


def day_in_cycle(target: date, anchor: date, cycle_length: int) -> int:
    """1-based day within the cycle. Dates before the anchor wrap backwards."""
    validate_cycle_length(cycle_length)
    return (target - anchor).days % cycle_length + 1


def phase_for_day(day: int, cycle_length: int) -> CyclePhase:
    menstrual_end, follicular_end, ovulatory_end = phase_boundaries(cycle_length)
    if day <= menstrual_end:
        return CyclePhase.MENSTRUAL
    if day <= follicular_end:
        return CyclePhase.FOLLICULAR
    if day <= ovulatory_end:
        return CyclePhase.OVULATORY
    return CyclePhase.LUTEAL


def calculate_position(
    target: date,
    anchor: Optional[date],
    cycle_length: Optional[int],
    regularity: Optional[str] = None,
) -> Optional[CyclePosition]:
    """
    Predict the cycle position for a date.
    
    Returns None ("unknown") when the anchor or length is missing or the
    runner asked not to be tracked.
    """
    if anchor is None or cycle_length is None:
        return None
    if regularity == CycleRegularity.DO_NOT_TRACK.value:
        return None
    
    day = day_in_cycle(target, anchor, cycle_length)
    phase = phase_for_day(day, cycle_length)
    return CyclePosition(
        phase=phase,
        day_in_cycle=day,
        cycle_length=cycle_length,
        menstruation_day=day if phase == CyclePhase.MENSTRUAL else None,
    )


def position_for_runner(runner, target: date) -> Optional[CyclePosition]:
    """Convenience wrapper reading anchor, length and regularity from a Runner."""
    return calculate_position(
        target, runner.cycle_anchor, runner.cycle_length, runner.cycle_regularity
    )


def next_period_start(anchor: date, cycle_length: int, on_or_after: date) -> date:
    """First predicted period start on or after the given date."""
    day = day_in_cycle(on_or_after, anchor, cycle_length)
    if day == 1:
        return on_or_after
    return on_or_after + timedelta(days=cycle_length - day + 1)


def in_intensity_reduction_window(
    target: date,
    anchor: Optional[date],
    cycle_length: Optional[int],
    days_before: int,
    days_after: int,
    regularity: Optional[str] = None,
) -> bool:
    """
    True when the date sits within days_before of a predicted period start,
    on the start day itself, or within days_after following it.
    """
    position = calculate_position(target, anchor, cycle_length, regularity)
    if position is None:
        return False
    if position.day_in_cycle <= 1 + days_after:
        return True
    return position.day_in_cycle > cycle_length - days_before
