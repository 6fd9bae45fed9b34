"""Runner profile model with cycle tracking data."""

import uuid
from sqlalchemy import Column, Integer, String, Float, Date, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from cyclecoach.database import Base
from cyclecoach.models.enums import CycleRegularity

MIN_CYCLE_LENGTH = 21
MAX_CYCLE_LENGTH = 45


class Runner(Base):
    """A runner's profile. Identity itself is issued elsewhere."""
    
    __tablename__ = "runners"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_ref = Column(String(255), unique=True, index=True, nullable=True)  # External identity
    name = Column(String(255), nullable=True)
    
    # Training background
    fitness_level = Column(String(20), default="intermediate")  # beginner, intermediate, advanced, elite
    typical_weekly_km = Column(Float, nullable=True)
    
    # Cycle tracking
    cycle_anchor = Column(Date, nullable=True)  # Last observed cycle start
    cycle_length = Column(Integer, nullable=True)  # 21-45 days
    cycle_regularity = Column(String(30), default=CycleRegularity.REGULAR.value)
    
    # Bumped on every plan creation; compare-and-swap guard for the one-active-plan rule
    plan_slot_version = Column(Integer, nullable=False, default=0)
    
    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    races = relationship("Race", back_populates="runner", cascade="all, delete-orphan")
    training_plans = relationship("TrainingPlan", back_populates="runner")
    cycle_logs = relationship("CycleLog", back_populates="runner", order_by="CycleLog.period_start.desc()")
    
    def __repr__(self):
        return f"<Runner {self.id} - {self.name}>"
    
    @property
    def cycle_tracking_enabled(self) -> bool:
        """Cycle-aware behavior needs an anchor, a length and consent to track."""
        return (
            self.cycle_anchor is not None
            and self.cycle_length is not None
            and self.cycle_regularity != CycleRegularity.DO_NOT_TRACK.value
        )
