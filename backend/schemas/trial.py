from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal, Optional

Rule = Literal["color", "shape", "number"]
# "demo" and "practice" are reserved for warm-up trials run by the presentation
# layer; the engine never produces them and they are never scored.
TrialType = Literal["core", "buffer", "guided", "extended", "demo", "practice"]


class StimulusCard(BaseModel):
    """A card to be sorted. Each attribute points at a different key card."""
    color: str
    shape: str
    number: int = Field(..., ge=1, le=4)

    class Config:
        frozen = True


class KeyCard(StimulusCard):
    """One of the four reference cards the subject sorts onto."""
    id: str


class Trial(BaseModel):
    """One classified subject response. Never modified after creation."""
    trial_number: int = Field(..., ge=1)
    rule: Rule
    stimulus: StimulusCard
    user_choice: str
    correct: bool
    response_time: float = Field(..., ge=0, allow_inf_nan=False)  # seconds
    trial_type: TrialType
    rule_switch: bool  # first trial of a new block
    perseverative: bool
    consecutive_errors: int = Field(..., ge=0)
    trial_in_block: int = Field(..., ge=1)
    rule_block_number: int = Field(..., ge=1)
    adaptation_latency: Optional[int] = None  # blocks 2..N only
    initial_rule_discovery_latency: Optional[int] = None  # block 1 only
    timestamp: datetime

    class Config:
        frozen = True
        from_attributes = True


class TrialResponseCreate(BaseModel):
    """A raw subject response submitted by the presentation layer."""
    choice: str = Field(..., min_length=1, max_length=8, description="Id of the chosen key card")
    response_time: float = Field(
        ..., ge=0, allow_inf_nan=False, description="Seconds from stimulus onset to choice"
    )
    trial_number: Optional[int] = Field(
        None, ge=1, description="Client's view of the trial being answered; rejected if out of order"
    )
