"""
Adaptive support escalation.

Normal -> GuidedMode -> RuleTraining as the subject's within-block error run
grows past T1 and then T2. A run of K correct responses resolves whatever
intervention is active. Escalation never blocks the subject from answering;
it only changes how the following trials are framed and labeled.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from services.engine_config import EngineConfig

InterventionLevel = Literal["normal", "guided", "rule_training"]


@dataclass(frozen=True)
class MonitorState:
    level: InterventionLevel = "normal"
    error_run: int = 0
    correct_run: int = 0
    # Sticky for reporting
    guided_mode_triggered: bool = False
    rule_training_triggered: bool = False

    @property
    def in_intervention(self) -> bool:
        return self.level != "normal"


class AdaptiveTriggerMonitor:
    def __init__(self, config: EngineConfig):
        # EngineConfig has already rejected T2 <= T1
        self.guided_threshold = config.guided_mode_threshold
        self.training_threshold = config.rule_training_threshold
        self.streak = config.adaptation_streak

    def start_block(self, state: MonitorState) -> MonitorState:
        """Reset the within-block runs. An unresolved intervention carries over."""
        return replace(state, error_run=0, correct_run=0)

    def update(self, state: MonitorState, correct: bool) -> MonitorState:
        if correct:
            correct_run = state.correct_run + 1
            level = state.level
            if level != "normal" and correct_run >= self.streak:
                level = "normal"
            return replace(state, level=level, correct_run=correct_run, error_run=0)

        error_run = state.error_run + 1
        level = state.level
        guided = state.guided_mode_triggered
        training = state.rule_training_triggered

        if level == "normal" and error_run >= self.guided_threshold:
            level = "guided"
            guided = True
        if level == "guided" and error_run >= self.training_threshold:
            level = "rule_training"
            training = True

        return MonitorState(
            level=level,
            error_run=error_run,
            correct_run=0,
            guided_mode_triggered=guided,
            rule_training_triggered=training,
        )
