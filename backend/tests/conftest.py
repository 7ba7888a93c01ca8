"""Shared fixtures: in-memory store, recording notifier, controllable clock."""
import sys
import os
import random

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from notifier import Notifier
from participants import ParticipantService
from poll_engine import PollService
from scheduler import DeadlineScheduler
from store import Store
from voting_engine import VotingService
from game_engine import GameService, QuestionService

PASSWORD = "secret-pw"


class RecordingNotifier(Notifier):
    """Notifier that records every emitted event instead of sending it."""
    def __init__(self):
        super().__init__()
        self.events: list = []

    async def emit(self, event, payload, rooms=None):
        self.events.append((event, payload.model_dump(mode="json"), None if rooms is None else list(rooms)))

    def names(self) -> list:
        return [e[0] for e in self.events]

    def of(self, name: str) -> list:
        return [e for e in self.events if e[0] == name]


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def scheduler():
    sched = DeadlineScheduler()
    yield sched
    sched.shutdown()


@pytest.fixture
def participants(store):
    return ParticipantService(store)


@pytest.fixture
def voting(store, participants, notifier, scheduler, clock):
    return VotingService(store, participants, notifier, scheduler, rng=random.Random(7), clock=clock,
                         window_seconds=60, penalty=1)


@pytest.fixture
def polls(store, participants, notifier, scheduler, clock):
    return PollService(store, participants, notifier, scheduler, clock=clock,
                       elimination_count=3, strict_rankings=False)


@pytest.fixture
def questions(store, notifier, clock):
    return QuestionService(store, notifier, clock=clock)


@pytest.fixture
def game(store, participants, questions, voting, notifier, clock):
    return GameService(store, participants, questions, voting, notifier, clock=clock)


@pytest.fixture
def make_participant(store, participants):
    """Register a participant and optionally set their score; returns the stored row."""
    async def _make(name: str, score: int = 0):
        result = await participants.register(name, PASSWORD)
        assert result.success, result.message
        if score:
            await store.participants.update({"id": result.participant.id}, {"score": score})
        return await participants.find_one(result.participant.id)
    return _make
