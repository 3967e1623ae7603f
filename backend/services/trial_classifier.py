"""
Trial classification.

Turns one raw response into an immutable Trial using the active and previous
rule, the running error count and the monitor's intervention level.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from schemas.trial import StimulusCard, Trial, TrialType
from services.adaptive_monitor import MonitorState
from services.engine_config import EngineConfig
from services.rule_scheduler import BlockPosition
from services.stimulus_deck import matching_key_card


def latency_to_adapt(outcomes: Sequence[bool], streak: int) -> Optional[int]:
    """Trials elapsed before the first unbroken run of `streak` correct responses.

    Returns None when no such run exists in `outcomes`.
    """
    run = 0
    for i, correct in enumerate(outcomes):
        run = run + 1 if correct else 0
        if run >= streak:
            return i - streak + 1
    return None


def block_latency(outcomes: Sequence[bool], streak: int, block_size: int) -> tuple[int, bool]:
    """(latency, adapted) for a finished block. Unadapted blocks score the full block length."""
    latency = latency_to_adapt(outcomes, streak)
    if latency is None:
        return block_size, False
    return latency, True


class TrialClassifier:
    def __init__(self, config: EngineConfig):
        self.config = config

    def is_buffer(self, position: BlockPosition) -> bool:
        return position.rule_block_number > 1 and position.trial_in_block <= self.config.buffer_trials

    def trial_type(self, position: BlockPosition, monitor: MonitorState) -> TrialType:
        if self.is_buffer(position):
            return "buffer"
        if monitor.level == "guided":
            return "guided"
        if monitor.level == "rule_training":
            return "extended"
        return "core"

    def classify(
        self,
        *,
        trial_number: int,
        choice: str,
        response_time: float,
        timestamp: datetime,
        stimulus: StimulusCard,
        position: BlockPosition,
        monitor: MonitorState,
        consecutive_errors: int,
        block_outcomes: Sequence[bool],
    ) -> Trial:
        """Label one response. `block_outcomes` holds correctness of earlier trials in this block."""
        correct = choice == matching_key_card(stimulus, position.rule)
        trial_type = self.trial_type(position, monitor)

        perseverative = (
            not correct
            and trial_type != "buffer"
            and position.previous_rule is not None
            and choice == matching_key_card(stimulus, position.previous_rule)
        )

        outcomes = [*block_outcomes, correct]
        latency = latency_to_adapt(outcomes, self.config.adaptation_streak)
        if latency is None:
            latency = len(outcomes)

        first_block = position.rule_block_number == 1
        return Trial(
            trial_number=trial_number,
            rule=position.rule,
            stimulus=stimulus,
            user_choice=choice,
            correct=correct,
            response_time=response_time,
            trial_type=trial_type,
            rule_switch=position.rule_switch,
            perseverative=perseverative,
            consecutive_errors=0 if correct else consecutive_errors + 1,
            trial_in_block=position.trial_in_block,
            rule_block_number=position.rule_block_number,
            adaptation_latency=None if first_block else latency,
            initial_rule_discovery_latency=latency if first_block else None,
            timestamp=timestamp,
        )
