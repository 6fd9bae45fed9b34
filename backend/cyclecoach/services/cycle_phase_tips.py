"""Static wellness tips per cycle phase, shown next to sessions and on the cycle screen."""

from dataclasses import dataclass, field
from typing import List

from cyclecoach.models.enums import CyclePhase


@dataclass(frozen=True)
class PhaseTips:
    phase: CyclePhase
    description: str
    guidance: str
    nutrition: List[str] = field(default_factory=list)
    rest: List[str] = field(default_factory=list)
    injury_prevention: List[str] = field(default_factory=list)
    mood: List[str] = field(default_factory=list)


PHASE_TIPS = {
    CyclePhase.MENSTRUAL: PhaseTips(
        phase=CyclePhase.MENSTRUAL,
        description="Menstrual Phase - Rest and Recovery",
        guidance=(
            "Your body needs extra rest and recovery. Focus on easy runs and listen to your body. "
            "It's okay to take extra rest days."
        ),
        nutrition=[
            "Eat iron-rich foods such as lentils, spinach and lean red meat to replace iron lost during bleeding.",
            "Magnesium-rich foods like almonds, avocado and dark chocolate can ease cramping.",
            "Keep hydrated with water and herbal teas.",
        ],
        rest=[
            "Swap hard sessions for walking, yoga or gentle mobility on heavy days.",
            "Aim for 7-9 hours of sleep; sleep quality often dips during your period.",
            "A rest day in the first one or two days is a sound choice, not a setback.",
        ],
        injury_prevention=[
            "Keep intensity low to moderate while estrogen is at its lowest.",
            "Focus on form rather than pace targets.",
            "Warm up thoroughly before any run.",
        ],
        mood=[
            "Lower energy and motivation are common in this phase.",
            "Gentle movement often helps with both mood and cramps.",
        ],
    ),
    CyclePhase.FOLLICULAR: PhaseTips(
        phase=CyclePhase.FOLLICULAR,
        description="Follicular Phase - Rising Energy",
        guidance=(
            "You're in your power phase! This is a great time for harder workouts, "
            "speed work, and building strength."
        ),
        nutrition=[
            "Prioritise lean protein to support muscle building and recovery.",
            "Complex carbohydrates such as oats, quinoa and sweet potato fuel harder sessions.",
            "Have 20 g or more of protein within 45 minutes after a workout.",
        ],
        rest=[
            "Recovery tends to be quicker, so you can handle more training volume.",
            "Keep at least one full rest day per week even when you feel fresh.",
        ],
        injury_prevention=[
            "A good window for strength work, which protects you in later phases.",
            "Hard efforts often feel easier now; still warm up properly before intense sessions.",
        ],
        mood=[
            "Rising estrogen usually brings more energy, focus and motivation.",
            "A good time to take on challenging workouts or set new goals.",
        ],
    ),
    CyclePhase.OVULATORY: PhaseTips(
        phase=CyclePhase.OVULATORY,
        description="Ovulatory Phase - Peak Performance",
        guidance=(
            "Peak performance time! Your body is primed for high-intensity workouts and PRs. "
            "Make the most of this window."
        ),
        nutrition=[
            "Fuel well before hard sessions; energy needs are high.",
            "Anti-inflammatory foods such as berries, oily fish and leafy greens support recovery.",
        ],
        rest=[
            "Balance intense sessions with proper recovery days.",
            "Keep sleep consistent to make the most of this window.",
        ],
        injury_prevention=[
            "Ligament laxity can rise around ovulation; take extra care with warm-ups and sharp turns.",
            "Include plyometric and balance work to keep joints stable.",
        ],
        mood=[
            "Confidence and sociability are often at their highest.",
            "A good time for group runs, races and time trials.",
        ],
    ),
    CyclePhase.LUTEAL: PhaseTips(
        phase=CyclePhase.LUTEAL,
        description="Luteal Phase - Recovery Focus",
        guidance=(
            "Your body needs more recovery now. Focus on easy miles and listen to fatigue signals. "
            "Prioritise sleep and nutrition."
        ),
        nutrition=[
            "Energy needs rise slightly; add a carbohydrate-rich snack on training days.",
            "Body temperature runs higher, so drink more before and during runs.",
            "Foods with B vitamins and magnesium can help with bloating and mood.",
        ],
        rest=[
            "Expect perceived effort to run higher for the same pace.",
            "Protect your sleep; it is easily disrupted late in the cycle.",
        ],
        injury_prevention=[
            "Run easy days truly easy and cut a session short if fatigue builds.",
            "Heat tolerance is lower; adjust pace on hot days.",
        ],
        mood=[
            "Irritability and low mood can increase in the days before your period.",
            "Shorter, familiar routes can make training feel more manageable.",
        ],
    ),
}


def tips_for_phase(phase: CyclePhase) -> PhaseTips:
    return PHASE_TIPS[phase]
