import asyncio
import logging
from typing import Coroutine, List, Optional, Sequence, Set

from spread import DrawnCard

logger = logging.getLogger(__name__)

SILENT_READING = "The spirits are silent. Please try again."
FAILED_READING = (
    "An error occurred while communing with the spirits. "
    "Please check your connection and try again."
)


class ReadingOrchestrator:
    """Fetches the narrative and the three card images for a finished spread.

    The narrative and each image run as separate tasks and merge into the
    session as soon as they resolve, in whatever order that happens. Each
    task writes one field only (the reading text, or one card's artwork
    held by reference) and carries the session generation it was started
    for, so a reset session silently drops anything still in flight.

    No request is retried. A failed narrative becomes FAILED_READING; a
    failed image leaves that card without artwork.
    """

    def __init__(self, interpreter=None) -> None:
        self.interpreter = interpreter
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        session,
        cards: Sequence[DrawnCard],
        question: str,
        generation: int,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> List[asyncio.Task]:
        """Start the reading and artwork tasks on loop, or on the running loop."""
        cards = list(cards)
        logger.info(f"Dispatching reading for generation {generation}: {[c.name for c in cards]}")

        tasks = [self._spawn(self._fetch_reading(session, cards, question, generation), loop)]
        if self.interpreter is not None:
            for card in cards:
                tasks.append(
                    self._spawn(self._fetch_artwork(session, card, generation), loop)
                )
        return tasks

    def _spawn(
        self, coro: Coroutine, loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> asyncio.Task:
        loop = loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        # The loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch_reading(
        self,
        session,
        cards: List[DrawnCard],
        question: str,
        generation: int,
    ) -> None:
        if self.interpreter is None:
            logger.warning("No interpreter configured; using the fallback reading")
            text = FAILED_READING
        else:
            try:
                text = await self.interpreter.generate_reading(question, cards)
            except Exception:
                logger.exception(f"Reading generation failed for generation {generation}")
                text = FAILED_READING
            else:
                text = (text or "").strip() or SILENT_READING
        session.apply_reading(generation, text)

    async def _fetch_artwork(
        self,
        session,
        card: DrawnCard,
        generation: int,
    ) -> None:
        card_name = card.name
        try:
            artwork_uri = await self.interpreter.generate_card_image(card_name)
        except Exception as e:
            logger.warning(f"Image generation failed for {card_name}: {e}")
            return
        if not artwork_uri:
            logger.warning(f"No image returned for {card_name}")
            return
        session.attach_artwork(generation, card, artwork_uri)

    async def wait(self) -> None:
        """Wait until every dispatched task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
