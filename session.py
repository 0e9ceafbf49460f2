import asyncio
import logging
import random
from dataclasses import asdict
from typing import Callable, Dict, List, Optional, Sequence

from deck import create_standard_tarot_deck, metadata_of
from spread import (
    DEFAULT_SLOT_COUNT,
    POSITION_ROLES,
    SPREAD_SIZE,
    DrawnCard,
    Layout,
    draw_card,
)

logger = logging.getLogger(__name__)

INPUT = "input"
SHUFFLING = "shuffling"
SELECTING = "selecting"
READING = "reading"

DEFAULT_SHUFFLE_DELAY = 2.5
DEFAULT_READING_DELAY = 1.0

Listener = Callable[[str, Dict], None]


class TarotSession:
    """The live divination session and the state machine that drives it.

    External events (start, select_slot, reset) and the two one-shot timers
    are the only things that move the session between states. Every timer and
    every reading dispatch is tagged with the generation that created it, and
    reset() bumps the generation, so anything scheduled before a reset is
    ignored when it finally arrives.

    Listeners receive (event, payload) for every change: "question", "state",
    "layout", "card", "reading", "artwork" and "reset".
    """

    def __init__(
        self,
        orchestrator=None,
        *,
        shuffle_delay: float = DEFAULT_SHUFFLE_DELAY,
        reading_delay: float = DEFAULT_READING_DELAY,
        slot_count: int = DEFAULT_SLOT_COUNT,
        deck: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.shuffle_delay = shuffle_delay
        self.reading_delay = reading_delay
        self.slot_count = slot_count
        self.compact = False
        self.generation = 0

        self._deck = list(deck) if deck is not None else create_standard_tarot_deck()
        self._rng = rng or random.Random()
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []

        self._clear()

    def _clear(self) -> None:
        self.state = INPUT
        self.question = ""
        self.cards: List[DrawnCard] = []
        self.layout: Optional[Layout] = None
        self.reading = ""
        self.reading_loading = False
        self.reading_ready = False

    # ---------------------------
    # Observers
    # ---------------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: str, payload: Dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception(f"Session listener failed on {event!r} event")

    # ---------------------------
    # External events
    # ---------------------------

    def set_question(self, question: str) -> None:
        if self.state != INPUT:
            logger.debug(f"Ignoring question change in {self.state} state")
            return
        self.question = question
        self._publish("question", {"question": question})

    def start(self, question: Optional[str] = None) -> bool:
        """Begin shuffling. Returns False when the event is ignored."""
        if self.state != INPUT:
            logger.debug(f"Ignoring start in {self.state} state")
            return False
        candidate = self.question if question is None else question
        if not candidate.strip():
            logger.debug("Ignoring start with an empty question")
            return False
        if candidate != self.question:
            self.question = candidate
            self._publish("question", {"question": candidate})

        self.layout = Layout.shuffle(self.slot_count, rng=self._rng)
        self.cards = []
        self._set_state(SHUFFLING)
        self._publish("layout", {"layout": self._layout_payload(self.compact)})
        self._schedule(self.shuffle_delay, self._finish_shuffle)
        logger.info(f"Session {self.generation} shuffling for question {self.question!r}")
        return True

    def select_slot(self, slot_id: int) -> Optional[DrawnCard]:
        """Draw a card for the chosen slot. Returns None when the event is ignored.

        Slots are not deduplicated here; the caller hides drawn slots.
        """
        if self.state != SELECTING:
            logger.debug(f"Ignoring slot {slot_id} selection in {self.state} state")
            return None
        if len(self.cards) >= SPREAD_SIZE:
            logger.debug(f"Ignoring slot {slot_id} selection, spread is complete")
            return None
        if self.layout is None or not 0 <= slot_id < len(self.layout):
            logger.debug(f"Ignoring selection of unknown slot {slot_id}")
            return None

        card = draw_card(slot_id, self._deck, rng=self._rng)
        self.cards.append(card)
        index = len(self.cards) - 1
        self._publish("card", self._card_payload(index, card))

        if len(self.cards) == SPREAD_SIZE:
            self._schedule(self.reading_delay, self._enter_reading)
            self._dispatch_reading()
        return card

    def reset(self) -> None:
        """Return to Input from any state, discarding everything."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.generation += 1
        self._clear()
        logger.info(f"Session reset, now generation {self.generation}")
        self._publish("reset", self.snapshot())

    def set_compact(self, compact: bool) -> None:
        """Switch display size. The current layout is rescaled, not reshuffled."""
        compact = bool(compact)
        if compact == self.compact:
            return
        self.compact = compact
        if self.layout is not None:
            self._publish("layout", {"layout": self._layout_payload(compact)})

    # ---------------------------
    # Timers
    # ---------------------------

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire, self.generation, callback)

    def _fire(self, generation: int, callback: Callable[[], None]) -> None:
        if generation != self.generation:
            logger.debug(f"Dropping timer from stale generation {generation}")
            return
        self._timer = None
        callback()

    def _finish_shuffle(self) -> None:
        if self.state == SHUFFLING:
            self._set_state(SELECTING)

    def _enter_reading(self) -> None:
        if self.state == SELECTING and len(self.cards) == SPREAD_SIZE:
            self._set_state(READING)

    def _set_state(self, state: str) -> None:
        logger.info(f"Session {self.generation}: {self.state} -> {state}")
        self.state = state
        self._publish("state", {"state": state, "generation": self.generation})

    # ---------------------------
    # Reading results
    # ---------------------------

    def _dispatch_reading(self) -> None:
        if self.orchestrator is None:
            return
        self.reading = ""
        self.reading_loading = True
        self.reading_ready = False
        self.orchestrator.dispatch(
            self, list(self.cards), self.question, self.generation, loop=self._loop
        )

    def apply_reading(self, generation: int, text: str) -> bool:
        if generation != self.generation:
            logger.warning(f"Discarding reading from stale generation {generation}")
            return False
        self.reading = text
        self.reading_loading = False
        self.reading_ready = True
        self._publish("reading", {"reading": text, "reading_ready": True})
        return True

    def attach_artwork(self, generation: int, card: DrawnCard, artwork_uri: str) -> bool:
        """Set the artwork of one drawn card. Other cards and fields are untouched.

        The card is matched by identity, so two draws from the same slot
        never receive each other's image.
        """
        if generation != self.generation:
            logger.warning(
                f"Discarding artwork for slot {card.slot_id} from stale generation {generation}"
            )
            return False
        for index, drawn in enumerate(self.cards):
            if drawn is not card:
                continue
            drawn.artwork_uri = artwork_uri
            self._publish(
                "artwork",
                {"index": index, "slot_id": drawn.slot_id, "artwork_uri": artwork_uri},
            )
            return True
        logger.warning(f"Card from slot {card.slot_id} is not in the session; artwork dropped")
        return False

    # ---------------------------
    # Views
    # ---------------------------

    def _card_payload(self, index: int, card: DrawnCard) -> Dict:
        return {
            "index": index,
            "slot_id": card.slot_id,
            "name": card.name,
            "orientation": card.orientation,
            "role": POSITION_ROLES[index],
            "artwork_uri": card.artwork_uri,
            "metadata": asdict(metadata_of(card.name)),
        }

    def _layout_payload(self, compact: bool) -> List[Dict]:
        if self.layout is None:
            return []
        return [asdict(slot) for slot in self.layout.slots(compact)]

    def snapshot(self, compact: Optional[bool] = None) -> Dict:
        if compact is None:
            compact = self.compact
        return {
            "generation": self.generation,
            "state": self.state,
            "question": self.question,
            "cards": [self._card_payload(i, card) for i, card in enumerate(self.cards)],
            "layout": self._layout_payload(compact),
            "compact": compact,
            "reading": self.reading,
            "reading_loading": self.reading_loading,
            "reading_ready": self.reading_ready,
        }
