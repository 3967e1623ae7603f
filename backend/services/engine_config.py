"""Validated policy constants for one assessment session."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from services.errors import ConfigurationError


@dataclass(frozen=True)
class EngineConfig:
    block_size: int = 6
    total_blocks: int = 6
    buffer_trials: int = 1         # grace window after each rule switch
    adaptation_streak: int = 2     # K: consecutive correct responses that count as adapted
    guided_mode_threshold: int = 3  # T1
    rule_training_threshold: int = 5  # T2

    def __post_init__(self):
        if self.block_size <= 0:
            raise ConfigurationError(f"block_size must be positive, got {self.block_size}")
        if self.total_blocks <= 0:
            raise ConfigurationError(f"total_blocks must be positive, got {self.total_blocks}")
        if not 0 <= self.buffer_trials < self.block_size:
            raise ConfigurationError(
                f"buffer_trials must be in [0, {self.block_size}), got {self.buffer_trials}"
            )
        if not 1 <= self.adaptation_streak <= self.block_size:
            raise ConfigurationError(
                f"adaptation_streak must be in [1, {self.block_size}], got {self.adaptation_streak}"
            )
        if self.guided_mode_threshold < 1:
            raise ConfigurationError(
                f"guided_mode_threshold must be at least 1, got {self.guided_mode_threshold}"
            )
        if self.rule_training_threshold <= self.guided_mode_threshold:
            raise ConfigurationError(
                "rule_training_threshold must exceed guided_mode_threshold "
                f"({self.rule_training_threshold} <= {self.guided_mode_threshold})"
            )

    @property
    def total_trials(self) -> int:
        return self.block_size * self.total_blocks

    @property
    def max_shifts(self) -> int:
        return self.total_blocks - 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EngineConfig":
        """Rebuild a config from a stored policy snapshot, ignoring unknown keys."""
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_settings(cls, settings) -> "EngineConfig":
        return cls(
            block_size=settings.block_size,
            total_blocks=settings.total_blocks,
            buffer_trials=settings.buffer_trials,
            adaptation_streak=settings.adaptation_streak,
            guided_mode_threshold=settings.guided_mode_threshold,
            rule_training_threshold=settings.rule_training_threshold,
        )
