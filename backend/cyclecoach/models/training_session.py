"""Training session model."""

import uuid
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime

from cyclecoach.database import Base
from cyclecoach.models.enums import IntensityLevel


class TrainingSession(Base):
    """A single scheduled workout within a training plan."""
    
    __tablename__ = "training_sessions"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_id = Column(String(36), ForeignKey("training_plans.id"), nullable=False, index=True)
    
    # Scheduling
    scheduled_date = Column(Date, nullable=False, index=True)
    week_number = Column(Integer, nullable=True)  # 1 = first plan week
    
    # Session details
    session_name = Column(String(255), nullable=False)
    workout_type = Column(String(20), nullable=False)  # easy, long, tempo, interval, rest
    description = Column(Text, nullable=True)
    
    # Targets
    target_distance_km = Column(Float, nullable=True)  # Null for rest days
    target_duration_minutes = Column(Integer, nullable=True)
    intensity = Column(String(20), default=IntensityLevel.MODERATE.value)
    
    # Snapshot taken at generation time, never recomputed for existing rows
    cycle_phase = Column(String(20), nullable=True)
    phase_guidance = Column(Text, nullable=True)
    
    # Outcome
    completed_at = Column(DateTime, nullable=True)  # Also set when skipped
    is_skipped = Column(Boolean, nullable=False, default=False)
    skip_reason = Column(String(500), nullable=True)
    actual_distance_km = Column(Float, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)
    rpe = Column(Integer, nullable=True)  # 1-10
    user_notes = Column(Text, nullable=True)
    deviation_severity = Column(String(20), nullable=True)  # Last classification of this outcome
    
    # Set whenever an adaptation pass rewrites the targets
    was_modified = Column(Boolean, nullable=False, default=False)
    
    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    
    # Relationships
    plan = relationship("TrainingPlan", back_populates="sessions")
    
    def __repr__(self):
        return f"<TrainingSession {self.scheduled_date} - {self.workout_type}: {self.session_name}>"
    
    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None and not self.is_skipped
    
    @property
    def is_logged(self) -> bool:
        """Completed or skipped."""
        return self.completed_at is not None or self.is_skipped
