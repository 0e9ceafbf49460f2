"""Shared fixtures for tarot session tests."""
import asyncio
import random
import time
from typing import List

import pytest

from orchestrator import ReadingOrchestrator
from session import TarotSession

QUESTION = "我的感情运势如何？"
ARTWORK = "data:image/png;base64,iVBORw0KGgo="


class ImmediateInterpreter:
    """Answers every request straight away."""

    def __init__(self, reading: str = "命运之轮正在转动。", artwork=ARTWORK):
        self.reading = reading
        self.artwork = artwork
        self.reading_calls: List[tuple] = []
        self.image_calls: List[str] = []

    async def generate_reading(self, question, cards):
        self.reading_calls.append((question, list(cards)))
        return self.reading

    async def generate_card_image(self, card_name):
        self.image_calls.append(card_name)
        return self.artwork


class ControlledInterpreter:
    """Every request parks on a future that the test resolves by hand."""

    def __init__(self):
        self.reading_requests: List[tuple] = []
        self.image_requests: List[tuple] = []

    async def generate_reading(self, question, cards):
        future = asyncio.get_running_loop().create_future()
        self.reading_requests.append((question, list(cards), future))
        return await future

    async def generate_card_image(self, card_name):
        future = asyncio.get_running_loop().create_future()
        self.image_requests.append((card_name, future))
        return await future


async def settle(rounds: int = 10) -> None:
    """Let ready tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def make_session():
    """Factory for sessions with short timers and a seeded RNG."""

    def factory(interpreter=None, *, orchestrate=True, seed=7, **kwargs):
        kwargs.setdefault("shuffle_delay", 0.01)
        kwargs.setdefault("reading_delay", 0.01)
        orchestrator = ReadingOrchestrator(interpreter) if orchestrate else None
        return TarotSession(orchestrator, rng=random.Random(seed), **kwargs)

    return factory
