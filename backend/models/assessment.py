import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Uuid
from sqlalchemy.orm import relationship
from database import Base, JSONType


class Assessment(Base):
    """Header of one subject's sorting session."""
    __tablename__ = "assessments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id = Column(String(100), nullable=True, index=True)  # external reference

    # Determines stimuli and rule order; with engine_config it makes the session replayable
    seed = Column(Integer, nullable=False)
    engine_config = Column(JSONType, nullable=False, default=dict)

    # Status: in_progress, completed, abandoned
    status = Column(String(50), default="in_progress", index=True)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    trials = relationship(
        "TrialRecord",
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="TrialRecord.trial_number",
    )
    result = relationship("AssessmentResult", back_populates="assessment", uselist=False)
