import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, Integer, ForeignKey, Float, Boolean, Uuid, event
from sqlalchemy.orm import relationship
from database import Base, JSONType


class AssessmentResult(Base):
    """The scorecard of a completed session. Written once, never updated."""
    __tablename__ = "assessment_results"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    assessment_id = Column(Uuid, ForeignKey("assessments.id"), unique=True, nullable=False)

    # Headline scores, duplicated out of `data` for querying
    cognitive_flexibility_score = Column(Integer, nullable=False)
    shifts_achieved = Column(Integer, nullable=False)
    perseverative_errors = Column(Integer, nullable=False)
    adaptation_latency = Column(Float, nullable=False)
    avg_response_time = Column(Float, nullable=False)
    guided_mode_triggered = Column(Boolean, nullable=False)
    rule_training_triggered = Column(Boolean, nullable=False)
    completed_at = Column(DateTime, nullable=False)

    # Full AssessmentData as returned to collaborators
    data = Column(JSONType, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    assessment = relationship("Assessment", back_populates="result")

    @classmethod
    def from_assessment_data(cls, assessment_id, data) -> "AssessmentResult":
        return cls(
            assessment_id=assessment_id,
            cognitive_flexibility_score=data.cognitive_flexibility_score,
            shifts_achieved=data.shifts_achieved,
            perseverative_errors=data.perseverative_errors,
            adaptation_latency=data.adaptation_latency,
            avg_response_time=data.avg_response_time,
            guided_mode_triggered=data.guided_mode_triggered,
            rule_training_triggered=data.rule_training_triggered,
            completed_at=data.completed_at,
            data=data.model_dump(mode="json"),
        )


@event.listens_for(AssessmentResult, "before_update")
def _reject_result_update(mapper, connection, target):
    raise ValueError("Assessment results are immutable; re-score from the trial log instead")
