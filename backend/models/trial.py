import uuid
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Float, Boolean, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base, JSONType


class TrialRecord(Base):
    """One classified response. Rows are only ever inserted, in trial order."""
    __tablename__ = "assessment_trials"
    __table_args__ = (
        UniqueConstraint("assessment_id", "trial_number", name="uq_trials_assessment_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    assessment_id = Column(Uuid, ForeignKey("assessments.id"), nullable=False, index=True)
    trial_number = Column(Integer, nullable=False)

    # Raw response (enough to replay the session)
    user_choice = Column(String(8), nullable=False)
    response_time = Column(Float, nullable=False)  # seconds
    timestamp = Column(DateTime, nullable=False)

    # Labels produced by the classifier
    rule = Column(String(20), nullable=False)
    stimulus = Column(JSONType, nullable=False)
    correct = Column(Boolean, nullable=False)
    trial_type = Column(String(20), nullable=False)  # core, buffer, guided, extended
    rule_switch = Column(Boolean, nullable=False, default=False)
    perseverative = Column(Boolean, nullable=False, default=False)
    consecutive_errors = Column(Integer, nullable=False, default=0)
    trial_in_block = Column(Integer, nullable=False)
    rule_block_number = Column(Integer, nullable=False)
    adaptation_latency = Column(Integer, nullable=True)
    initial_rule_discovery_latency = Column(Integer, nullable=True)

    assessment = relationship("Assessment", back_populates="trials")
