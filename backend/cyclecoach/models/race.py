"""Race goal model anchoring a training plan."""

import uuid
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from cyclecoach.database import Base
from cyclecoach.models.enums import RaceCompletionStatus


class Race(Base):
    """Goal event owned by one runner. Only the result fields change once a plan exists."""
    
    __tablename__ = "races"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    runner_id = Column(String(36), ForeignKey("runners.id"), nullable=False, index=True)
    
    # Race details
    name = Column(String(200), nullable=False)  # "Marathon de Paris 2026"
    location = Column(String(200), nullable=True)
    race_date = Column(Date, nullable=False, index=True)
    distance_km = Column(Float, nullable=False)
    distance_type = Column(String(20), default="custom")  # 5k, 10k, half, marathon, custom
    goal_time_seconds = Column(Integer, nullable=True)
    training_start_date = Column(Date, nullable=True)
    
    # Post-race result
    completion_status = Column(String(20), default=RaceCompletionStatus.NOT_ATTEMPTED.value)
    result_time_seconds = Column(Integer, nullable=True)
    result_logged_at = Column(DateTime, nullable=True)
    
    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    runner = relationship("Runner", back_populates="races")
    training_plans = relationship("TrainingPlan", back_populates="race")
    
    def __repr__(self):
        return f"<Race {self.name} - {self.race_date}>"
    
    @property
    def goal_time_formatted(self):
        """Return goal time as HH:MM:SS."""
        if not self.goal_time_seconds:
            return None
        hours = self.goal_time_seconds // 3600
        minutes = (self.goal_time_seconds % 3600) // 60
        seconds = self.goal_time_seconds % 60
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
