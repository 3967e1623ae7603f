from pydantic import BaseModel, Field
from datetime import datetime
from uuid import UUID
from typing import Optional

from schemas.trial import KeyCard, Rule, StimulusCard, Trial


class AssessmentCreate(BaseModel):
    subject_id: Optional[str] = Field(None, max_length=100, description="External subject reference")
    seed: Optional[int] = Field(None, ge=0, description="Fixes stimulus and rule order; random if omitted")


class AssessmentState(BaseModel):
    """What the presentation layer needs to show the next trial."""
    id: UUID
    status: str  # in_progress, completed, abandoned
    next_trial_number: Optional[int]
    total_trials: int
    rule_block_number: Optional[int]
    trial_in_block: Optional[int]
    stimulus: Optional[StimulusCard]
    key_cards: list[KeyCard]
    intervention_level: str  # normal, guided, rule_training
    trials_completed: int


class AssessmentResponse(BaseModel):
    id: UUID
    subject_id: Optional[str]
    seed: int
    status: str
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class AssessmentData(BaseModel):
    """Session scorecard. Derived from the trial log only."""
    trials: list[Trial]
    cognitive_flexibility_score: int = Field(..., ge=0, le=100)
    shifts_achieved: int = Field(..., ge=0)
    perseverative_errors: int = Field(..., ge=0)
    adaptation_latency: float = Field(..., ge=0)  # mean trials-to-adapt over post-switch blocks
    avg_response_time: float = Field(..., ge=0)  # seconds, core trials only
    guided_mode_triggered: bool
    rule_training_triggered: bool
    completed_at: datetime

    class Config:
        frozen = True


# ── Tiered report view ─────────────────────────────────────────────


class HeadlineScores(BaseModel):
    cognitive_flexibility_score: int
    score_label: str
    shifts_achieved: int
    max_shifts: int
    perseverative_errors: int
    avg_response_time: float


class PerformanceMetrics(BaseModel):
    rule_adaptation_percent: int
    error_control_percent: int
    overall_accuracy_percent: int


class AdaptiveFeatures(BaseModel):
    guided_mode_triggered: bool
    rule_training_triggered: bool
    adaptation_latency: float


class BlockPerformance(BaseModel):
    rule_block_number: int
    rule: Rule
    accuracy_percent: int
    avg_response_time: float


class ResponseTimePoint(BaseModel):
    trial_number: int
    response_time: float
    correct: bool


class TieredReport(BaseModel):
    """Read-only projection of AssessmentData for a report tier."""
    assessment_id: UUID
    tier: str
    completed_at: datetime
    headline: HeadlineScores
    performance: Optional[PerformanceMetrics] = None
    adaptive_features: Optional[AdaptiveFeatures] = None
    block_performance: Optional[list[BlockPerformance]] = None
    response_times: Optional[list[ResponseTimePoint]] = None
    trials: Optional[list[Trial]] = None
