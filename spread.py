import math
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from deck import create_standard_tarot_deck


DEFAULT_REVERSAL_PROBABILITY = 0.2
DEFAULT_SLOT_COUNT = 22

# Three-card spread, in selection order
POSITION_ROLES = ("Self", "Obstacle", "Guidance")
SPREAD_SIZE = len(POSITION_ROLES)

UPRIGHT = "upright"
REVERSED = "reversed"

# Base circle radius and radius jitter amplitude, per display size
FULL_RADIUS = 240
COMPACT_RADIUS = 115
FULL_RADIUS_JITTER = 8
COMPACT_RADIUS_JITTER = 4
ANGLE_JITTER = 1.0


@dataclass
class DrawnCard:
    slot_id: int
    name: str
    orientation: str = UPRIGHT
    artwork_uri: Optional[str] = None

    @property
    def is_reversed(self) -> bool:
        return self.orientation == REVERSED


@dataclass(frozen=True)
class LayoutSlot:
    slot_id: int
    x: float
    y: float
    rotation: float
    z: int


def draw_card(
    slot_id: int,
    deck: Optional[Sequence[str]] = None,
    *,
    reversal_probability: float = DEFAULT_REVERSAL_PROBABILITY,
    rng=random,
) -> DrawnCard:
    """Draw one card for the chosen slot.

    Cards are drawn with replacement: every draw sees the whole deck, so the
    same card can come up more than once in a spread. reversal_probability is
    clamped to [0, 1].
    """
    if deck is None:
        deck = create_standard_tarot_deck()

    if reversal_probability < 0:
        reversal_probability = 0.0
    elif reversal_probability > 1:
        reversal_probability = 1.0

    name = rng.choice(deck)
    reversed_card = rng.random() < reversal_probability
    return DrawnCard(
        slot_id=slot_id,
        name=name,
        orientation=REVERSED if reversed_card else UPRIGHT,
    )


class Layout:
    """Jittered circular arrangement of face-down slots.

    The random jitter is drawn once in shuffle(); slots() only rescales it,
    so switching between compact and full display keeps every slot in place
    relative to the others.
    """

    def __init__(self, radius_jitter: List[float], angle_jitter: List[float]) -> None:
        if len(radius_jitter) != len(angle_jitter):
            raise ValueError("Jitter sequences must have the same length")
        self._radius_jitter = list(radius_jitter)
        self._angle_jitter = list(angle_jitter)

    @classmethod
    def shuffle(cls, slot_count: int = DEFAULT_SLOT_COUNT, rng=random) -> "Layout":
        if slot_count <= 0:
            raise ValueError("Slot count must be positive")
        # Radius jitter is stored as a fraction of the display's amplitude
        radius_jitter = []
        angle_jitter = []
        for _ in range(slot_count):
            radius_jitter.append(rng.uniform(-1.0, 1.0))
            angle_jitter.append(rng.uniform(-ANGLE_JITTER, ANGLE_JITTER))
        return cls(radius_jitter, angle_jitter)

    def __len__(self) -> int:
        return len(self._angle_jitter)

    def slots(self, compact: bool = False) -> List[LayoutSlot]:
        total = len(self)
        angle_step = 360 / total
        radius = COMPACT_RADIUS if compact else FULL_RADIUS
        amplitude = COMPACT_RADIUS_JITTER if compact else FULL_RADIUS_JITTER

        slots: List[LayoutSlot] = []
        for i in range(total):
            base_angle = -90 + i * angle_step
            jitter = self._angle_jitter[i]
            final_radius = radius + self._radius_jitter[i] * amplitude
            final_angle = math.radians(base_angle + jitter)
            slots.append(
                LayoutSlot(
                    slot_id=i,
                    x=math.cos(final_angle) * final_radius,
                    y=math.sin(final_angle) * final_radius,
                    rotation=base_angle + 90 + jitter,
                    z=i,
                )
            )
        return slots


def generate_layout(
    slot_count: int = DEFAULT_SLOT_COUNT,
    compact: bool = False,
    *,
    rng=random,
) -> List[LayoutSlot]:
    """Shuffle a fresh layout and return its slots for the given display size."""
    return Layout.shuffle(slot_count, rng=rng).slots(compact)
