"""In-memory async repositories for every entity the game persists.

Each repository keeps rows in insertion order and hands out copies, so a
caller can only change stored state through ``update``/``increment``/``delete``.
Filters are equality dicts; a set/list/tuple value matches by membership.
``update`` returns the number of rows it changed, which callers use as a
compare-and-set: ``update({"id": x, "status": "active"}, {...}) == 1`` means
this caller won the transition.
"""
import logging
from operator import attrgetter
from typing import Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel

from errors import DuplicateKeyError
from models import (
    Participant, Question, ParticipantAnswer, VotingSession, Vote, Poll, PollRanking,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_MEMBERSHIP_TYPES = (set, frozenset, list, tuple)


def _matches(row: BaseModel, where: Optional[dict]) -> bool:
    if not where:
        return True
    for field, expected in where.items():
        value = getattr(row, field)
        if isinstance(expected, _MEMBERSHIP_TYPES):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class Repository(Generic[T]):
    def __init__(self, name: str, unique: Sequence[Tuple[str, ...]] = ()):
        self.name = name
        self._unique = list(unique)
        self._rows: Dict[str, T] = {}

    def _check_unique(self, candidate: T, ignore_id: Optional[str] = None):
        for fields in self._unique:
            key = tuple(getattr(candidate, f) for f in fields)
            for row_id, row in self._rows.items():
                if row_id == ignore_id:
                    continue
                if tuple(getattr(row, f) for f in fields) == key:
                    raise DuplicateKeyError(self.name, fields)

    async def create(self, entity: T) -> T:
        if entity.id in self._rows:
            raise DuplicateKeyError(self.name, ("id",))
        self._check_unique(entity)
        self._rows[entity.id] = entity.model_copy(deep=True)
        return entity.model_copy(deep=True)

    async def create_many(self, entities: List[T]) -> List[T]:
        return [await self.create(e) for e in entities]

    async def find_one(self, where: Optional[dict] = None,
                       order_by: Optional[str] = None, descending: bool = False) -> Optional[T]:
        rows = await self.find_many(where, order_by=order_by, descending=descending, limit=1)
        return rows[0] if rows else None

    async def find_many(self, where: Optional[dict] = None, order_by: Optional[str] = None,
                        descending: bool = False, limit: Optional[int] = None) -> List[T]:
        rows = [r for r in self._rows.values() if _matches(r, where)]
        if order_by:
            # sorted() is stable in both directions, ties keep insertion order
            rows = sorted(rows, key=attrgetter(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [r.model_copy(deep=True) for r in rows]

    async def update(self, where: dict, patch: dict) -> int:
        targets = [r for r in self._rows.values() if _matches(r, where)]
        staged = [(r.id, r.model_copy(update=patch)) for r in targets]
        for row_id, row in staged:
            self._check_unique(row, ignore_id=row_id)
        for row_id, row in staged:
            self._rows[row_id] = row
        return len(staged)

    async def increment(self, where: dict, field: str, delta: int, floor: Optional[int] = None) -> int:
        changed = 0
        for row_id, row in list(self._rows.items()):
            if not _matches(row, where):
                continue
            value = getattr(row, field) + delta
            if floor is not None:
                value = max(floor, value)
            self._rows[row_id] = row.model_copy(update={field: value})
            changed += 1
        return changed

    async def delete(self, where: dict) -> int:
        doomed = [row_id for row_id, r in self._rows.items() if _matches(r, where)]
        for row_id in doomed:
            del self._rows[row_id]
        return len(doomed)

    async def count(self, where: Optional[dict] = None) -> int:
        return sum(1 for r in self._rows.values() if _matches(r, where))

    def clear(self):
        self._rows.clear()


class Store:
    """All repositories of the game plus the cascades between them."""

    def __init__(self):
        self.participants: Repository[Participant] = Repository("participants", unique=[("name",)])
        self.questions: Repository[Question] = Repository("questions")
        self.answers: Repository[ParticipantAnswer] = Repository(
            "participant_answers", unique=[("participant_id", "question_id")])
        self.voting_sessions: Repository[VotingSession] = Repository("voting_sessions")
        self.votes: Repository[Vote] = Repository(
            "votes", unique=[("voting_session_id", "voter_participant_id")])
        self.polls: Repository[Poll] = Repository("polls")
        self.poll_rankings: Repository[PollRanking] = Repository("poll_rankings")

    async def delete_poll(self, poll_id: str) -> int:
        await self.poll_rankings.delete({"poll_id": poll_id})
        return await self.polls.delete({"id": poll_id})

    async def wipe_participants(self) -> int:
        """Delete every participant together with the rows that reference them."""
        await self.answers.delete({})
        await self.votes.delete({})
        await self.poll_rankings.delete({})
        await self.voting_sessions.delete({})
        removed = await self.participants.delete({})
        logger.info("Wiped %d participants", removed)
        return removed

    def reset(self):
        for repo in (self.participants, self.questions, self.answers, self.voting_sessions,
                     self.votes, self.polls, self.poll_rankings):
            repo.clear()
