"""Reported period starts and how well each one was predicted."""

import uuid
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from cyclecoach.database import Base


class CycleLog(Base):
    """One row per period report."""

    __tablename__ = "cycle_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    runner_id = Column(String(36), ForeignKey("runners.id"), nullable=False, index=True)

    period_start = Column(Date, nullable=False)
    reported_at = Column(DateTime, nullable=False)

    # Prediction tracking (empty on the first report)
    predicted_start = Column(Date, nullable=True)
    days_difference = Column(Integer, nullable=True)  # Positive when the period came late
    prediction_accurate = Column(Boolean, nullable=False, default=False)

    # Gap since the previous report, kept only when it is a plausible cycle length
    observed_cycle_length = Column(Integer, nullable=True)

    # Whether a miss re-phased the active plan
    triggered_recalculation = Column(Boolean, nullable=False, default=False)
    affected_plan_id = Column(String(36), ForeignKey("training_plans.id"), nullable=True)

    # Relationships
    runner = relationship("Runner", back_populates="cycle_logs")

    def __repr__(self):
        return f"<CycleLog {self.runner_id} {self.period_start} diff={self.days_difference}>"
