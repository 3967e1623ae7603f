"""
Key cards and the seeded stimulus sequence.

Stimuli are built so that color, shape and number each match a different
key card. A key card therefore identifies at most one sorting rule, which is
what lets a wrong answer be attributed to the previous rule.
"""
import random

from schemas.trial import KeyCard, Rule, StimulusCard

KEY_CARDS: tuple[KeyCard, ...] = (
    KeyCard(id="A", color="red", shape="triangle", number=1),
    KeyCard(id="B", color="green", shape="star", number=2),
    KeyCard(id="C", color="yellow", shape="cross", number=3),
    KeyCard(id="D", color="blue", shape="circle", number=4),
)

KEY_CARD_IDS = frozenset(card.id for card in KEY_CARDS)


def matching_key_card(stimulus: StimulusCard, rule: Rule) -> str:
    """Return the id of the key card the stimulus belongs on under `rule`."""
    value = getattr(stimulus, rule)
    for card in KEY_CARDS:
        if getattr(card, rule) == value:
            return card.id
    raise ValueError(f"No key card has {rule}={value!r}")


class StimulusDeck:
    """Deterministic stimulus per (seed, trial_number)."""

    def __init__(self, seed: int = 0):
        self.seed = seed

    def draw(self, trial_number: int) -> StimulusCard:
        rng = random.Random(self.seed * 10007 + trial_number)
        color_src, shape_src, number_src = rng.sample(range(len(KEY_CARDS)), 3)
        return StimulusCard(
            color=KEY_CARDS[color_src].color,
            shape=KEY_CARDS[shape_src].shape,
            number=KEY_CARDS[number_src].number,
        )
