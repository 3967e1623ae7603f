"""
Rule block scheduling.

The session is a fixed number of equally sized blocks. Each block has one
hidden sorting rule and consecutive blocks never share a rule, so every block
boundary is a genuine shift.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from schemas.trial import Rule
from services.engine_config import EngineConfig
from services.errors import ConfigurationError

RULES: tuple[Rule, ...] = ("color", "shape", "number")


@dataclass(frozen=True)
class BlockPosition:
    """Where the next trial sits in the session."""
    rule_block_number: int
    trial_in_block: int
    rule: Rule
    previous_rule: Optional[Rule]
    rule_switch: bool
    complete: bool = False


def build_rule_sequence(total_blocks: int, seed: int | None = None) -> tuple[Rule, ...]:
    """Cycle a permutation of the three rules across the blocks.

    Without a seed the canonical color -> shape -> number order is used.
    """
    order = list(RULES)
    if seed is not None:
        order = random.Random(seed).sample(RULES, len(RULES))
    return tuple(order[i % len(order)] for i in range(total_blocks))


class RuleBlockScheduler:
    """Decides the active rule and when it changes. Pure apart from construction."""

    def __init__(self, config: EngineConfig, rule_sequence: Sequence[str] | None = None,
                 seed: int | None = None):
        self.config = config
        if rule_sequence is None:
            rule_sequence = build_rule_sequence(config.total_blocks, seed)
        self.rule_sequence: tuple[Rule, ...] = self._validate(tuple(rule_sequence))

    def _validate(self, sequence: tuple) -> tuple:
        if len(sequence) != self.config.total_blocks:
            raise ConfigurationError(
                f"rule_sequence has {len(sequence)} blocks, expected {self.config.total_blocks}"
            )
        unknown = [r for r in sequence if r not in RULES]
        if unknown:
            raise ConfigurationError(f"Unknown rules in sequence: {unknown}")
        for i in range(1, len(sequence)):
            if sequence[i] == sequence[i - 1]:
                raise ConfigurationError(
                    f"Blocks {i} and {i + 1} share rule {sequence[i]!r}; every block must shift"
                )
        return sequence

    # ── RULE LOOKUPS ───────────────────────────────────────────────────

    def rule_for_block(self, block_number: int) -> Rule:
        return self.rule_sequence[block_number - 1]

    def previous_rule_for_block(self, block_number: int) -> Optional[Rule]:
        if block_number <= 1:
            return None
        return self.rule_sequence[block_number - 2]

    def locate(self, trial_number: int) -> tuple[int, int]:
        """Map a 1-based trial number to (rule_block_number, trial_in_block)."""
        if not 1 <= trial_number <= self.config.total_trials:
            raise IndexError(f"trial {trial_number} outside 1..{self.config.total_trials}")
        block_index, offset = divmod(trial_number - 1, self.config.block_size)
        return block_index + 1, offset + 1

    def current_rule(self, trial_index: int) -> Rule:
        block_number, _ = self.locate(trial_index)
        return self.rule_for_block(block_number)

    # ── TRANSITIONS ────────────────────────────────────────────────────

    def _position(self, block_number: int, trial_in_block: int) -> BlockPosition:
        return BlockPosition(
            rule_block_number=block_number,
            trial_in_block=trial_in_block,
            rule=self.rule_for_block(block_number),
            previous_rule=self.previous_rule_for_block(block_number),
            rule_switch=block_number > 1 and trial_in_block == 1,
        )

    def start(self) -> BlockPosition:
        return self._position(1, 1)

    def advance(self, position: BlockPosition) -> BlockPosition:
        """Position of the trial after `position`; flags completion after the last block."""
        if position.complete:
            return position
        if position.trial_in_block < self.config.block_size:
            return self._position(position.rule_block_number, position.trial_in_block + 1)
        if position.rule_block_number >= self.config.total_blocks:
            return BlockPosition(
                rule_block_number=position.rule_block_number,
                trial_in_block=position.trial_in_block,
                rule=position.rule,
                previous_rule=position.previous_rule,
                rule_switch=False,
                complete=True,
            )
        return self._position(position.rule_block_number + 1, 1)
