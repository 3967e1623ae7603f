"""
Assessment session engine.

A thin sequencing shell over the pure transitions:

    RuleBlockScheduler.advance -> TrialClassifier.classify -> AdaptiveTriggerMonitor.update

One response is fully classified before the next is accepted. The engine
owns no I/O; a session can be rebuilt at any point by replaying its raw
responses through `AssessmentEngine.replay`.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from schemas.assessment import AssessmentData
from schemas.trial import StimulusCard, Trial
from services.adaptive_monitor import AdaptiveTriggerMonitor, MonitorState
from services.engine_config import EngineConfig
from services.errors import (
    InvalidResponseError,
    ResultNotReadyError,
    SessionCompleteError,
    TrialOrderError,
)
from services.metrics_aggregator import MetricsAggregator
from services.rule_scheduler import BlockPosition, RuleBlockScheduler
from services.stimulus_deck import KEY_CARD_IDS, StimulusDeck
from services.trial_classifier import TrialClassifier

logger = logging.getLogger(__name__)


class AssessmentEngine:
    """Running state of one subject's session."""

    def __init__(self, config: EngineConfig | None = None, seed: int = 0,
                 rule_sequence: Sequence[str] | None = None):
        self.config = config or EngineConfig()
        self.seed = seed
        self.scheduler = RuleBlockScheduler(self.config, rule_sequence=rule_sequence, seed=seed)
        self.classifier = TrialClassifier(self.config)
        self.monitor = AdaptiveTriggerMonitor(self.config)
        self.aggregator = MetricsAggregator(self.config)
        self.deck = StimulusDeck(seed)

        self.position: BlockPosition = self.scheduler.start()
        self.monitor_state = MonitorState()
        self.consecutive_errors = 0
        self._block_outcomes: list[bool] = []
        self._trials: list[Trial] = []

    # ── STATE QUERIES ──────────────────────────────────────────────────

    @property
    def trials(self) -> tuple[Trial, ...]:
        return tuple(self._trials)

    @property
    def is_complete(self) -> bool:
        return self.position.complete

    @property
    def next_trial_number(self) -> Optional[int]:
        return None if self.is_complete else len(self._trials) + 1

    @property
    def current_stimulus(self) -> Optional[StimulusCard]:
        if self.is_complete:
            return None
        return self.deck.draw(self.next_trial_number)

    @property
    def intervention_level(self) -> str:
        return self.monitor_state.level

    # ── RESPONSE PROCESSING ────────────────────────────────────────────

    def _check_response(self, choice: str, response_time: float, trial_number: Optional[int]):
        if self.is_complete:
            raise SessionCompleteError(
                f"Session already complete after {len(self._trials)} trials"
            )
        if trial_number is not None and trial_number != self.next_trial_number:
            raise TrialOrderError(
                f"Expected trial {self.next_trial_number}, got {trial_number}"
            )
        if choice not in KEY_CARD_IDS:
            raise InvalidResponseError(f"Unknown key card {choice!r}")
        if response_time is None or not math.isfinite(response_time) or response_time < 0:
            raise InvalidResponseError(f"response_time must be a finite number >= 0, got {response_time}")

    def submit_response(self, choice: str, response_time: float,
                        timestamp: datetime | None = None,
                        trial_number: int | None = None) -> Trial:
        """Classify one response, update running counters and append the trial."""
        try:
            self._check_response(choice, response_time, trial_number)
        except (SessionCompleteError, TrialOrderError, InvalidResponseError) as e:
            logger.warning("Rejected response for session seed=%s: %s", self.seed, e)
            raise

        if self.position.rule_switch:
            self.monitor_state = self.monitor.start_block(self.monitor_state)
            self._block_outcomes = []
            logger.debug(
                "Rule switch to %s at block %d", self.position.rule, self.position.rule_block_number
            )

        trial = self.classifier.classify(
            trial_number=len(self._trials) + 1,
            choice=choice,
            response_time=float(response_time),
            timestamp=timestamp or datetime.utcnow(),
            stimulus=self.deck.draw(len(self._trials) + 1),
            position=self.position,
            monitor=self.monitor_state,
            consecutive_errors=self.consecutive_errors,
            block_outcomes=self._block_outcomes,
        )

        previous = self.monitor_state
        self.monitor_state = self.monitor.update(previous, trial.correct)
        if self.monitor_state.level != previous.level:
            logger.info(
                "Intervention %s -> %s at trial %d (block %d)",
                previous.level, self.monitor_state.level,
                trial.trial_number, trial.rule_block_number,
            )

        self.consecutive_errors = trial.consecutive_errors
        self._block_outcomes.append(trial.correct)
        self._trials.append(trial)
        self.position = self.scheduler.advance(self.position)

        if self.is_complete:
            logger.info("Session complete after %d trials (seed=%s)", len(self._trials), self.seed)
        return trial

    # ── RESULTS ────────────────────────────────────────────────────────

    def get_result(self) -> AssessmentData:
        if not self.is_complete:
            raise ResultNotReadyError(
                f"Session has {len(self._trials)}/{self.config.total_trials} trials"
            )
        return self.aggregator.aggregate(self._trials)

    @classmethod
    def replay(cls, responses: Iterable[tuple[str, float, datetime]],
               config: EngineConfig | None = None, seed: int = 0,
               rule_sequence: Sequence[str] | None = None) -> "AssessmentEngine":
        """Rebuild a session from its raw (choice, response_time, timestamp) log."""
        engine = cls(config=config, seed=seed, rule_sequence=rule_sequence)
        for choice, response_time, timestamp in responses:
            engine.submit_response(choice, response_time, timestamp=timestamp)
        return engine
