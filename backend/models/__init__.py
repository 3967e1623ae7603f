from models.assessment import Assessment
from models.trial import TrialRecord
from models.assessment_result import AssessmentResult

__all__ = [
    "Assessment",
    "TrialRecord",
    "AssessmentResult",
]
