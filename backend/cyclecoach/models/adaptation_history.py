"""Append-only record of adaptation passes."""

import uuid
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from cyclecoach.database import Base
from cyclecoach.models.enums import AdaptationStatus


class PlanAdaptationHistory(Base):
    """One row per finished adaptation pass. Rows are never updated except viewed_at."""
    
    __tablename__ = "plan_adaptation_history"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_id = Column(String(36), ForeignKey("training_plans.id"), nullable=False, index=True)
    
    # Completion events are deduplicated on the job token
    job_token = Column(String(64), unique=True, nullable=True)
    status = Column(String(20), nullable=False, default=AdaptationStatus.SUCCEEDED.value)
    
    adapted_at = Column(DateTime, nullable=False)
    viewed_at = Column(DateTime, nullable=True)
    
    summary = Column(Text, nullable=False, default="")
    trigger_reason = Column(String(500), nullable=False, default="")
    sessions_affected_count = Column(Integer, nullable=False, default=0)
    changes = Column(JSON, nullable=False, default=list)
    # Example: [{"session_id": "...", "scheduled_date": "2026-03-02", "old_distance_km": 8.0, "new_distance_km": 6.5, ...}]
    error_message = Column(Text, nullable=True)
    
    # Relationships
    plan = relationship("TrainingPlan", back_populates="adaptation_history")
    
    def __repr__(self):
        return f"<PlanAdaptationHistory {self.plan_id} {self.status} at {self.adapted_at}>"
