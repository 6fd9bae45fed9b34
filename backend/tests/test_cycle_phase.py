"""Tests for the cycle phase calculator."""
from datetime import date, timedelta

import pytest

from cyclecoach.exceptions import ValidationError
from cyclecoach.models.enums import CyclePhase
from cyclecoach.services import cycle_phase

ANCHOR = date(2026, 1, 1)
LENGTHS = range(21, 46)
ANCHORS = [date(2025, 2, 28), date(2026, 1, 1), date(2026, 3, 15)]
OFFSETS = [-400, -57, -1, 0, 1, 13, 27, 28, 44, 90, 365, 1001]


@pytest.mark.parametrize(
    "target,phase,day",
    [
        (date(2026, 1, 3), CyclePhase.MENSTRUAL, 3),
        (date(2026, 1, 10), CyclePhase.FOLLICULAR, 10),
        (date(2026, 1, 16), CyclePhase.OVULATORY, 16),
        (date(2026, 1, 25), CyclePhase.LUTEAL, 25),
    ],
)
def test_28_day_cycle_scenario(target, phase, day):
    position = cycle_phase.calculate_position(target, ANCHOR, 28, "regular")
    assert position.phase == phase
    assert position.day_in_cycle == day


def test_menstruation_day_only_during_menstrual_phase():
    assert cycle_phase.calculate_position(date(2026, 1, 3), ANCHOR, 28).menstruation_day == 3
    assert cycle_phase.calculate_position(date(2026, 1, 10), ANCHOR, 28).menstruation_day is None


def test_28_day_boundaries_match_canonical_cycle():
    assert cycle_phase.phase_ranges(28) == {
        CyclePhase.MENSTRUAL: (1, 5),
        CyclePhase.FOLLICULAR: (6, 14),
        CyclePhase.OVULATORY: (15, 17),
        CyclePhase.LUTEAL: (18, 28),
    }


@pytest.mark.parametrize("length", LENGTHS)
def test_phase_ranges_partition_the_cycle(length):
    ranges = cycle_phase.phase_ranges(length)
    ordered = [
        ranges[CyclePhase.MENSTRUAL],
        ranges[CyclePhase.FOLLICULAR],
        ranges[CyclePhase.OVULATORY],
        ranges[CyclePhase.LUTEAL],
    ]
    assert ordered[0][0] == 1
    assert ordered[-1][1] == length
    for (start, end), (next_start, _) in zip(ordered, ordered[1:]):
        assert start <= end
        assert next_start == end + 1
    covered = [d for start, end in ordered for d in range(start, end + 1)]
    assert covered == list(range(1, length + 1))


@pytest.mark.parametrize("length", LENGTHS)
@pytest.mark.parametrize("anchor", ANCHORS)
def test_day_in_cycle_always_in_range(length, anchor):
    for offset in OFFSETS:
        day = cycle_phase.day_in_cycle(anchor + timedelta(days=offset), anchor, length)
        assert 1 <= day <= length


@pytest.mark.parametrize("length", [21, 26, 28, 33, 45])
@pytest.mark.parametrize("k", [-3, -1, 1, 2, 7])
def test_phase_is_periodic(length, k):
    for offset in range(length):
        target = ANCHOR + timedelta(days=offset)
        shifted = target + timedelta(days=k * length)
        assert (
            cycle_phase.calculate_position(target, ANCHOR, length).phase
            == cycle_phase.calculate_position(shifted, ANCHOR, length).phase
        )


def test_dates_before_anchor_wrap_backwards():
    # The day before the anchor is the last day of the previous cycle
    assert cycle_phase.day_in_cycle(ANCHOR - timedelta(days=1), ANCHOR, 28) == 28


@pytest.mark.parametrize(
    "anchor,length,regularity",
    [
        (None, 28, "regular"),
        (ANCHOR, None, "regular"),
        (ANCHOR, 28, "do_not_track"),
    ],
)
def test_unknown_position(anchor, length, regularity):
    assert cycle_phase.calculate_position(date(2026, 1, 5), anchor, length, regularity) is None


@pytest.mark.parametrize("length", [0, 20, 46, 90])
def test_cycle_length_out_of_range_is_rejected(length):
    with pytest.raises(ValidationError) as exc:
        cycle_phase.validate_cycle_length(length)
    assert exc.value.field == "cycle_length"


def test_next_period_start():
    assert cycle_phase.next_period_start(ANCHOR, 28, date(2026, 1, 1)) == date(2026, 1, 1)
    assert cycle_phase.next_period_start(ANCHOR, 28, date(2026, 1, 2)) == date(2026, 1, 29)
    assert cycle_phase.next_period_start(ANCHOR, 28, date(2026, 1, 29)) == date(2026, 1, 29)


def test_intensity_reduction_window_around_period_start():
    def in_window(target):
        return cycle_phase.in_intensity_reduction_window(target, ANCHOR, 28, 3, 2)

    # Days 26-28 before the next start, day 1 and the two days after it
    assert in_window(date(2026, 1, 26))
    assert in_window(date(2026, 1, 29))
    assert in_window(date(2026, 1, 31))
    assert not in_window(date(2026, 1, 25))
    assert not in_window(date(2026, 2, 1))
    assert not cycle_phase.in_intensity_reduction_window(date(2026, 1, 29), None, None, 3, 2)
