"""Ranked polls: every participant ranks the others, lower average rank wins points."""
import asyncio
import functools
import logging
import math
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import config
from errors import ErrorKind, NotFoundError
from models import (
    EliminatedEntry, OperationResult, Poll, PollDetail, PollRanking, PollResultEntry, PollResults,
    RankingEntry,
)
from notifier import Notifier
from participants import ParticipantService
from scheduler import DeadlineScheduler
from store import Store

logger = logging.getLogger(__name__)


def _timer_key(poll_id: str) -> str:
    return f"poll:{poll_id}"


def _points_for(average_rank: float) -> int:
    """100 points minus 10 per rank place, rounded half up, never negative; unranked earns 0."""
    if average_rank <= 0:
        return 0
    return max(0, int(math.floor(100 - average_rank * 10 + 0.5)))


class PollService:
    def __init__(self, store: Store, participants: ParticipantService, notifier: Notifier,
                 scheduler: DeadlineScheduler, clock: Callable[[], float] = time.time,
                 elimination_count: Optional[int] = None, strict_rankings: Optional[bool] = None):
        self.store = store
        self.participants = participants
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock
        self.elimination_count = (elimination_count if elimination_count is not None
                                  else config.POLL_ELIMINATION_COUNT)
        self.strict_rankings = (strict_rankings if strict_rankings is not None
                                else config.STRICT_POLL_RANKINGS)
        self._lock = asyncio.Lock()

    async def create_poll(self, title: str, description: Optional[str] = None,
                          time_limit: Optional[int] = None) -> Poll:
        title = (title or "").strip()
        if not title:
            raise ValueError("Poll title is required")
        if time_limit is None:
            time_limit = config.DEFAULT_POLL_TIME_LIMIT
        if time_limit < config.MIN_POLL_TIME_LIMIT:
            raise ValueError(f"Time limit must be at least {config.MIN_POLL_TIME_LIMIT} seconds")
        poll = await self.store.polls.create(Poll(
            title=title,
            description=description,
            time_limit=time_limit,
            status="pending",
            created_at=self.clock(),
        ))
        logger.info("Poll created: %s ('%s', %ds)", poll.id, poll.title, poll.time_limit)
        return poll

    async def activate_poll(self, poll_id: str) -> Poll:
        async with self._lock:
            poll = await self.store.polls.find_one({"id": poll_id})
            if poll is None:
                raise NotFoundError("Poll", poll_id)

            # Only one poll may run at a time
            for other in await self.store.polls.find_many({"is_active": True}):
                if other.id != poll_id:
                    self.scheduler.cancel(_timer_key(other.id))
                    logger.warning("Poll %s force-completed by activation of %s", other.id, poll_id)
            await self.store.polls.update({"is_active": True}, {"is_active": False, "status": "completed"})

            ends_at = self.clock() + poll.time_limit
            await self.store.polls.update(
                {"id": poll_id}, {"is_active": True, "status": "active", "poll_ends_at": ends_at})
            poll = await self.store.polls.find_one({"id": poll_id})
            self.scheduler.arm(_timer_key(poll_id), poll.time_limit, functools.partial(self.end_poll, poll_id))

        logger.info("Poll %s activated until %.0f", poll_id, ends_at)
        await self.notifier.poll_activated(poll)
        return poll

    async def submit_rankings(self, poll_id: str, ranker_id: str, password: str,
                              rankings: List[RankingEntry]) -> OperationResult:
        if not await self.participants.validate_password(ranker_id, password):
            return OperationResult.fail(ErrorKind.INVALID_CREDENTIAL, "Invalid password")

        async with self._lock:
            poll = await self.store.polls.find_one({"id": poll_id})
            if poll is None:
                return OperationResult.fail(ErrorKind.POLL_NOT_FOUND, "Poll not found")
            if not poll.is_active or poll.status != "active":
                return OperationResult.fail(ErrorKind.POLL_ENDED, "Poll has ended")
            if poll.poll_ends_at is not None and self.clock() > poll.poll_ends_at:
                return OperationResult.fail(ErrorKind.POLL_EXPIRED, "Poll time has expired")
            if any(r.participant_id == ranker_id for r in rankings):
                return OperationResult.fail(ErrorKind.SELF_RANK, "You cannot rank yourself")

            known = {p.id for p in await self.participants.find_all()}
            if any(r.participant_id not in known for r in rankings):
                return OperationResult.fail(ErrorKind.INVALID_PARTICIPANT, "Invalid participant in rankings")

            if self.strict_rankings:
                targets = [r.participant_id for r in rankings]
                ranks = [r.rank for r in rankings]
                if len(set(targets)) != len(targets):
                    return OperationResult.fail(ErrorKind.VALIDATION_FAILURE,
                                                "Each participant may be ranked only once")
                if len(set(ranks)) != len(ranks):
                    return OperationResult.fail(ErrorKind.VALIDATION_FAILURE, "Rank values must be unique")

            await self.store.poll_rankings.delete({"poll_id": poll_id, "ranker_participant_id": ranker_id})
            now = self.clock()
            await self.store.poll_rankings.create_many([
                PollRanking(
                    poll_id=poll_id,
                    ranker_participant_id=ranker_id,
                    ranked_participant_id=r.participant_id,
                    rank=r.rank,
                    created_at=now,
                )
                for r in rankings
            ])

        logger.info("Rankings submitted for poll %s by %s (%d entries)", poll_id, ranker_id, len(rankings))
        await self.notifier.poll_ranking_update(poll_id)
        return OperationResult.ok("Rankings submitted successfully")

    async def get_poll_results(self, poll_id: str) -> PollResults:
        poll = await self.store.polls.find_one({"id": poll_id})
        if poll is None:
            raise NotFoundError("Poll", poll_id)

        ranks_by_participant: Dict[str, List[int]] = defaultdict(list)
        for ranking in await self.store.poll_rankings.find_many({"poll_id": poll_id}):
            ranks_by_participant[ranking.ranked_participant_id].append(ranking.rank)

        results = []
        for participant in await self.participants.find_all():
            ranks = ranks_by_participant.get(participant.id, [])
            average_rank = sum(ranks) / len(ranks) if ranks else 0.0
            results.append(PollResultEntry(
                participant_id=participant.id,
                participant_name=participant.name,
                average_rank=average_rank,
                total_points=_points_for(average_rank),
            ))

        # Unranked participants (average 0) sort after everyone who was ranked
        results.sort(key=lambda r: (r.average_rank == 0, r.average_rank))

        eliminated = results[-self.elimination_count:] if self.elimination_count > 0 else []
        return PollResults(
            poll=poll,
            results=results,
            eliminated_participants=[
                EliminatedEntry(participant_id=r.participant_id, participant_name=r.participant_name)
                for r in eliminated
            ],
        )

    async def end_poll(self, poll_id: str) -> Optional[PollResults]:
        """Finish an active poll and award its points. Returns None if it was not active."""
        async with self._lock:
            self.scheduler.cancel(_timer_key(poll_id))
            claimed = await self.store.polls.update(
                {"id": poll_id, "is_active": True}, {"is_active": False, "status": "completed"})
            if not claimed:
                return None

            try:
                results = await self.get_poll_results(poll_id)
                for entry in results.results:
                    if entry.total_points > 0:
                        await self.participants.update_score(entry.participant_id, entry.total_points)
            except Exception:
                logger.exception("Scoring failed for poll %s; left as completed", poll_id)
                return None

        logger.info("Poll %s ended; %d participants scored", poll_id,
                    sum(1 for r in results.results if r.total_points > 0))
        await self.notifier.poll_ended(poll_id, results)
        await self.notifier.leaderboard_update(await self.participants.leaderboard_views())
        return results

    async def delete_poll(self, poll_id: str) -> OperationResult:
        async with self._lock:
            self.scheduler.cancel(_timer_key(poll_id))
            try:
                removed = await self.store.delete_poll(poll_id)
            except Exception:
                logger.exception("Failed to delete poll %s", poll_id)
                return OperationResult.fail(ErrorKind.VALIDATION_FAILURE, "Failed to delete poll")
        if not removed:
            return OperationResult.fail(ErrorKind.NOT_FOUND, "Poll not found")
        logger.info("Poll %s deleted", poll_id)
        return OperationResult.ok("Poll deleted successfully")

    async def get_active_poll(self) -> Optional[Poll]:
        return await self.store.polls.find_one({"is_active": True, "status": "active"})

    async def get_poll(self, poll_id: str) -> Optional[PollDetail]:
        poll = await self.store.polls.find_one({"id": poll_id})
        if poll is None:
            return None
        rankings = await self.store.poll_rankings.find_many({"poll_id": poll_id})
        return PollDetail(poll=poll, rankings=rankings)

    async def get_all_polls(self) -> List[PollDetail]:
        polls = await self.store.polls.find_many(order_by="created_at", descending=True)
        return [PollDetail(poll=p, rankings=await self.store.poll_rankings.find_many({"poll_id": p.id}))
                for p in polls]
