"""
Session scoring.

A pure fold over a complete trial log. The same log always yields the same
AssessmentData, so a persisted log can be re-scored at any time.

Composite score (0-100):
    SHIFT_WEIGHT         * 100 * shifts_achieved / max_shifts
  + ERROR_CONTROL_WEIGHT * max(0, 100 - ERROR_PENALTY * perseverative_errors)
  + SPEED_WEIGHT         * clamp(100 - SPEED_PENALTY * (avg_rt - FAST_RESPONSE_SECONDS), 0, 100)
"""
from __future__ import annotations

from itertools import groupby
from typing import Sequence

from schemas.assessment import AssessmentData
from schemas.trial import Trial
from services.adaptive_monitor import AdaptiveTriggerMonitor, MonitorState
from services.engine_config import EngineConfig
from services.trial_classifier import block_latency

SHIFT_WEIGHT = 0.5
ERROR_CONTROL_WEIGHT = 0.3
SPEED_WEIGHT = 0.2

ERROR_PENALTY = 15  # error-control points lost per perseverative error
FAST_RESPONSE_SECONDS = 1.0  # full speed credit at or below this
SPEED_PENALTY = 25  # speed points lost per second above FAST_RESPONSE_SECONDS

SCORE_BANDS: tuple[tuple[int, str], ...] = (
    (90, "Excellent"),
    (80, "Very Good"),
    (70, "Good"),
    (60, "Average"),
    (40, "Below Average"),
)


def score_label(score: float) -> str:
    for floor, label in SCORE_BANDS:
        if score >= floor:
            return label
    return "Needs Improvement"


def error_control_term(perseverative_errors: int) -> float:
    return max(0.0, 100.0 - ERROR_PENALTY * perseverative_errors)


def speed_term(avg_response_time: float) -> float:
    return max(0.0, min(100.0, 100.0 - SPEED_PENALTY * (avg_response_time - FAST_RESPONSE_SECONDS)))


def cognitive_flexibility_score(shifts_achieved: int, max_shifts: int,
                                perseverative_errors: int, avg_response_time: float | None) -> int:
    """Weighted composite. `avg_response_time` is None when no core trial was answered."""
    shift_term = 100.0 * shifts_achieved / max_shifts if max_shifts else 100.0
    speed = speed_term(avg_response_time) if avg_response_time is not None else 0.0
    score = (
        SHIFT_WEIGHT * shift_term
        + ERROR_CONTROL_WEIGHT * error_control_term(perseverative_errors)
        + SPEED_WEIGHT * speed
    )
    return int(max(0, min(100, round(score))))


class MetricsAggregator:
    def __init__(self, config: EngineConfig):
        self.config = config
        self.monitor = AdaptiveTriggerMonitor(config)

    def block_latencies(self, trials: Sequence[Trial]) -> dict[int, tuple[int, bool]]:
        """Final (latency, adapted) per block number."""
        result = {}
        for block_number, block in groupby(trials, key=lambda t: t.rule_block_number):
            outcomes = [t.correct for t in block]
            result[block_number] = block_latency(
                outcomes, self.config.adaptation_streak, self.config.block_size
            )
        return result

    def replay_monitor(self, trials: Sequence[Trial]) -> MonitorState:
        state = MonitorState()
        for trial in trials:
            if trial.rule_switch:
                state = self.monitor.start_block(state)
            state = self.monitor.update(state, trial.correct)
        return state

    def aggregate(self, trials: Sequence[Trial]) -> AssessmentData:
        if not trials:
            raise ValueError("Cannot aggregate an empty trial log")

        latencies = self.block_latencies(trials)
        post_switch = [latencies[b] for b in sorted(latencies) if b > 1]
        shifts_achieved = sum(1 for _, adapted in post_switch if adapted)
        adaptation_latency = (
            round(sum(lat for lat, _ in post_switch) / len(post_switch), 2) if post_switch else 0.0
        )

        perseverative_errors = sum(1 for t in trials if t.perseverative)

        core_times = [t.response_time for t in trials if t.trial_type == "core"]
        avg_response_time = sum(core_times) / len(core_times) if core_times else 0.0

        monitor = self.replay_monitor(trials)

        return AssessmentData(
            trials=list(trials),
            cognitive_flexibility_score=cognitive_flexibility_score(
                shifts_achieved, self.config.max_shifts, perseverative_errors,
                avg_response_time if core_times else None,
            ),
            shifts_achieved=shifts_achieved,
            perseverative_errors=perseverative_errors,
            adaptation_latency=adaptation_latency,
            avg_response_time=avg_response_time,
            guided_mode_triggered=monitor.guided_mode_triggered,
            rule_training_triggered=monitor.rule_training_triggered,
            completed_at=trials[-1].timestamp,
        )
