"""Training plan model with recalculation state."""

import uuid
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, Boolean, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime

from cyclecoach.database import Base
from cyclecoach.models.enums import PlanStatus


class TrainingPlan(Base):
    """A race-anchored plan. Never deleted, only superseded."""
    
    __tablename__ = "training_plans"
    __table_args__ = (
        # At most one active plan per runner, enforced by the database as well
        Index(
            "uq_training_plans_one_active_per_runner",
            "runner_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    runner_id = Column(String(36), ForeignKey("runners.id"), nullable=False, index=True)
    race_id = Column(String(36), ForeignKey("races.id"), nullable=False, index=True)
    
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=PlanStatus.ACTIVE.value)
    generation_source = Column(String(50), default="rule_based")
    rationale = Column(Text, nullable=True)
    
    # Periodization window
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    
    # Weekly structure
    training_days_per_week = Column(Integer, default=4)
    long_run_day = Column(Integer, default=6)  # 0=Mon ... 6=Sun
    
    # Intensity softening around the predicted period start
    days_before_period_to_reduce_intensity = Column(Integer, default=3)
    days_after_period_to_reduce_intensity = Column(Integer, default=2)
    
    # Recalculation state
    pending_confirmation = Column(Boolean, nullable=False, default=False)
    confirmation_requested_at = Column(DateTime, nullable=True)
    confirmation_responded_at = Column(DateTime, nullable=True)
    confirmation_accepted = Column(Boolean, nullable=True)
    pending_trigger_reason = Column(String(500), nullable=True)
    last_job_ref = Column(String(64), nullable=True)
    last_recalculation_requested_at = Column(DateTime, nullable=True)
    last_recalculated_at = Column(DateTime, nullable=True)
    last_recalculation_summary = Column(Text, nullable=True)
    summary_viewed_at = Column(DateTime, nullable=True)
    # Bumped on every write to the recalculation fields; compare-and-swap guard
    recalc_version = Column(Integer, nullable=False, default=0)
    
    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    runner = relationship("Runner", back_populates="training_plans")
    race = relationship("Race", back_populates="training_plans")
    sessions = relationship(
        "TrainingSession",
        back_populates="plan",
        order_by="TrainingSession.scheduled_date",
        cascade="all, delete-orphan",
    )
    adaptation_history = relationship(
        "PlanAdaptationHistory",
        back_populates="plan",
        order_by="PlanAdaptationHistory.adapted_at.desc()",
    )
    
    def __repr__(self):
        return f"<TrainingPlan {self.id} {self.status} {self.start_date}..{self.end_date}>"
    
    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE.value
