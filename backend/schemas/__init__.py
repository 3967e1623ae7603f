from schemas.trial import (
    Rule,
    TrialType,
    StimulusCard,
    KeyCard,
    Trial,
    TrialResponseCreate
)
from schemas.assessment import (
    AssessmentCreate,
    AssessmentState,
    AssessmentResponse,
    AssessmentData,
    HeadlineScores,
    PerformanceMetrics,
    AdaptiveFeatures,
    BlockPerformance,
    ResponseTimePoint,
    TieredReport
)

__all__ = [
    # Trial
    "Rule", "TrialType", "StimulusCard", "KeyCard", "Trial", "TrialResponseCreate",
    # Assessment
    "AssessmentCreate", "AssessmentState", "AssessmentResponse", "AssessmentData",
    # Report
    "HeadlineScores", "PerformanceMetrics", "AdaptiveFeatures", "BlockPerformance",
    "ResponseTimePoint", "TieredReport"
]
