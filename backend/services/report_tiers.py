"""
Report tiers.

Which sections of a finished assessment a tier may see. This is a lookup
keyed by tier string; the scorecard itself is never recomputed or altered
here, only projected.
"""
from __future__ import annotations

from itertools import groupby
from uuid import UUID

from schemas.assessment import (
    AdaptiveFeatures,
    AssessmentData,
    BlockPerformance,
    HeadlineScores,
    PerformanceMetrics,
    ResponseTimePoint,
    TieredReport,
)
from services.metrics_aggregator import error_control_term, score_label

HEADLINE = "headline_scores"
PERFORMANCE = "performance_metrics"
ADAPTIVE = "adaptive_features"
BLOCKS = "block_performance"
RESPONSE_TIMES = "response_time_trend"
RAW_TRIALS = "raw_trials"

TIER_CAPABILITIES: dict[str, frozenset[str]] = {
    "basic": frozenset({HEADLINE}),
    "standard": frozenset({HEADLINE, PERFORMANCE, ADAPTIVE}),
    "premium": frozenset({HEADLINE, PERFORMANCE, ADAPTIVE, BLOCKS, RESPONSE_TIMES, RAW_TRIALS}),
}


def capabilities_for(tier: str) -> frozenset[str]:
    try:
        return TIER_CAPABILITIES[tier.lower()]
    except KeyError:
        raise ValueError(f"Unknown report tier {tier!r}; expected one of {sorted(TIER_CAPABILITIES)}")


def block_performance(data: AssessmentData) -> list[BlockPerformance]:
    blocks = []
    for block_number, group in groupby(data.trials, key=lambda t: t.rule_block_number):
        trials = list(group)
        correct = sum(1 for t in trials if t.correct)
        blocks.append(BlockPerformance(
            rule_block_number=block_number,
            rule=trials[0].rule,
            accuracy_percent=round(100 * correct / len(trials)),
            avg_response_time=round(sum(t.response_time for t in trials) / len(trials), 2),
        ))
    return blocks


def build_report(assessment_id: UUID, data: AssessmentData, tier: str, max_shifts: int = 5) -> TieredReport:
    caps = capabilities_for(tier)
    report = TieredReport(
        assessment_id=assessment_id,
        tier=tier.lower(),
        completed_at=data.completed_at,
        headline=HeadlineScores(
            cognitive_flexibility_score=data.cognitive_flexibility_score,
            score_label=score_label(data.cognitive_flexibility_score),
            shifts_achieved=data.shifts_achieved,
            max_shifts=max_shifts,
            perseverative_errors=data.perseverative_errors,
            avg_response_time=round(data.avg_response_time, 2),
        ),
    )

    if PERFORMANCE in caps:
        correct = sum(1 for t in data.trials if t.correct)
        report.performance = PerformanceMetrics(
            rule_adaptation_percent=round(100 * data.shifts_achieved / max_shifts) if max_shifts else 100,
            error_control_percent=round(error_control_term(data.perseverative_errors)),
            overall_accuracy_percent=round(100 * correct / len(data.trials)) if data.trials else 0,
        )
    if ADAPTIVE in caps:
        report.adaptive_features = AdaptiveFeatures(
            guided_mode_triggered=data.guided_mode_triggered,
            rule_training_triggered=data.rule_training_triggered,
            adaptation_latency=data.adaptation_latency,
        )
    if BLOCKS in caps:
        report.block_performance = block_performance(data)
    if RESPONSE_TIMES in caps:
        report.response_times = [
            ResponseTimePoint(trial_number=t.trial_number, response_time=t.response_time, correct=t.correct)
            for t in data.trials
        ]
    if RAW_TRIALS in caps:
        report.trials = list(data.trials)
    return report
