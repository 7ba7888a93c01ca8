"""Elimination votes among participants tied on the top score.

A session is ``active`` until its deadline timer or an explicit end closes it
(``completed``), or until it is cancelled or superseded (``cancelled``). Both
terminal states are final. All state changes go through ``self._lock`` and a
conditional status update, so the deadline timer and an admin "end now"
racing each other tally and penalize exactly once.
"""
import asyncio
import functools
import logging
import random
import time
from typing import Callable, Dict, List, Optional

import config
from errors import ErrorKind, NotFoundError
from models import (
    OperationResult, Participant, Vote, VotingResults, VotingSession, VotingSessionDetail,
)
from notifier import Notifier
from participants import ParticipantService
from scheduler import DeadlineScheduler
from store import Store
from tie_detector import detect_tie

logger = logging.getLogger(__name__)


def _timer_key(session_id: str) -> str:
    return f"voting:{session_id}"


class VotingService:
    def __init__(self, store: Store, participants: ParticipantService, notifier: Notifier,
                 scheduler: DeadlineScheduler, rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.time, window_seconds: Optional[int] = None,
                 penalty: Optional[int] = None):
        self.store = store
        self.participants = participants
        self.notifier = notifier
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.clock = clock
        self.window_seconds = window_seconds if window_seconds is not None else config.VOTING_WINDOW_SECONDS
        self.penalty = penalty if penalty is not None else config.ELIMINATION_PENALTY
        self._lock = asyncio.Lock()

    async def detect_tie_and_open(self) -> Optional[VotingSession]:
        """Open (or reuse) a voting session if the current leaderboard has a qualifying tie."""
        group = detect_tie(await self.participants.get_leaderboard())
        if group is None:
            return None
        return await self.open(group.participants, group.score)

    async def open(self, tied_participants: List[Participant], tied_score: int) -> VotingSession:
        async with self._lock:
            existing = await self.store.voting_sessions.find_one({"status": "active"})
            if existing is not None:
                if existing.tied_score == tied_score:
                    logger.info("Voting session %s already open for tied score %d", existing.id, tied_score)
                    return existing
                logger.info("Superseding voting session %s (score %d) with a tie at %d",
                            existing.id, existing.tied_score, tied_score)
                await self._cancel_locked(existing.id)

            now = self.clock()
            session = await self.store.voting_sessions.create(VotingSession(
                tied_participants=[p.id for p in tied_participants],
                tied_score=tied_score,
                voting_time_in_seconds=self.window_seconds,
                voting_ends_at=now + self.window_seconds,
                created_at=now,
            ))
            self.scheduler.arm(_timer_key(session.id), self.window_seconds,
                               functools.partial(self.close, session.id))

        logger.info("Voting session %s opened for %d participants tied at %d",
                    session.id, len(session.tied_participants), tied_score)
        tied_views = await self.participants.views(tied_participants)
        await self.notifier.voting_session_started(session, tied_views)
        return session

    async def submit_vote(self, session_id: str, voter_id: str, target_id: str,
                          password: str) -> OperationResult:
        if not await self.participants.validate_password(voter_id, password):
            return OperationResult.fail(ErrorKind.INVALID_CREDENTIAL, "Invalid password")

        async with self._lock:
            session = await self.store.voting_sessions.find_one({"id": session_id})
            if session is None:
                return OperationResult.fail(ErrorKind.SESSION_NOT_FOUND, "Voting session not found")
            if session.status != "active":
                return OperationResult.fail(ErrorKind.SESSION_ENDED, "Voting session has ended")
            if self.clock() > session.voting_ends_at:
                return OperationResult.fail(ErrorKind.VOTING_EXPIRED, "Voting time has expired")
            if voter_id not in session.tied_participants:
                return OperationResult.fail(ErrorKind.NOT_ELIGIBLE,
                                            "You are not eligible to vote in this session")
            if target_id not in session.tied_participants:
                return OperationResult.fail(ErrorKind.INVALID_TARGET, "Invalid vote target")
            if voter_id == target_id:
                return OperationResult.fail(ErrorKind.SELF_VOTE, "You cannot vote for yourself")

            # Last write wins per voter
            changed = await self.store.votes.update(
                {"voting_session_id": session_id, "voter_participant_id": voter_id},
                {"target_participant_id": target_id},
            )
            if not changed:
                await self.store.votes.create(Vote(
                    voting_session_id=session_id,
                    voter_participant_id=voter_id,
                    target_participant_id=target_id,
                    created_at=self.clock(),
                ))

        logger.info("Vote recorded in session %s by %s", session_id, voter_id)
        await self.notifier.vote_update(session_id)
        return OperationResult.ok("Vote submitted successfully")

    async def close(self, session_id: str) -> Optional[VotingResults]:
        """Tally and finish an active session. Returns None if there was nothing to close."""
        async with self._lock:
            self.scheduler.cancel(_timer_key(session_id))
            claimed = await self.store.voting_sessions.update(
                {"id": session_id, "status": "active"}, {"status": "completed"})
            if not claimed:
                return None

            try:
                session = await self.store.voting_sessions.find_one({"id": session_id})
                votes = await self._votes(session_id)
                vote_count = self._count(session, votes)
                eliminated_id = self._pick_eliminated(vote_count)
                if eliminated_id is not None:
                    await self.store.voting_sessions.update(
                        {"id": session_id}, {"eliminated_participant_id": eliminated_id})
                    await self.participants.apply_penalty(eliminated_id, self.penalty)
                    session = session.model_copy(update={"eliminated_participant_id": eliminated_id})
                results = await self._results(session, votes, vote_count, eliminated_id)
            except Exception:
                logger.exception("Tally failed for voting session %s; left as completed", session_id)
                return None

        if eliminated_id:
            logger.info("Voting session %s completed; eliminated %s", session_id, eliminated_id)
        else:
            logger.info("Voting session %s completed with no elimination", session_id)
        await self.notifier.voting_session_ended(session_id, results)
        await self.notifier.leaderboard_update(await self.participants.leaderboard_views())
        return results

    async def cancel(self, session_id: str) -> OperationResult:
        """Cancel an active session and drop its timer.

        Completed and cancelled sessions stay as they are; cancelling one
        reports ``AlreadyEnded`` instead of overwriting its status.
        """
        async with self._lock:
            return await self._cancel_locked(session_id)

    async def _cancel_locked(self, session_id: str) -> OperationResult:
        self.scheduler.cancel(_timer_key(session_id))
        if await self.store.voting_sessions.count({"id": session_id}) == 0:
            return OperationResult.fail(ErrorKind.SESSION_NOT_FOUND, "Voting session not found")
        changed = await self.store.voting_sessions.update(
            {"id": session_id, "status": "active"}, {"status": "cancelled"})
        if not changed:
            return OperationResult.fail(ErrorKind.ALREADY_ENDED, "Voting session has already ended")
        logger.info("Voting session %s cancelled", session_id)
        await self.notifier.voting_session_cancelled(session_id)
        return OperationResult.ok("Voting session cancelled")

    async def get_results(self, session_id: str) -> VotingResults:
        session = await self.store.voting_sessions.find_one({"id": session_id})
        if session is None:
            raise NotFoundError("VotingSession", session_id)
        votes = await self._votes(session_id)
        vote_count = self._count(session, votes)
        if session.status == "completed":
            eliminated_id = session.eliminated_participant_id
        elif session.status == "cancelled":
            eliminated_id = None
        else:
            # Provisional outcome if the session were closed now, drawn from a copy of the rng
            preview = random.Random()
            preview.setstate(self.rng.getstate())
            eliminated_id = self._pick_eliminated(vote_count, preview)
        return await self._results(session, votes, vote_count, eliminated_id)

    async def get_session(self, session_id: str) -> Optional[VotingSessionDetail]:
        session = await self.store.voting_sessions.find_one({"id": session_id})
        if session is None:
            return None
        return VotingSessionDetail(voting_session=session, votes=await self._votes(session_id))

    async def get_active_session(self) -> Optional[VotingSessionDetail]:
        session = await self.store.voting_sessions.find_one({"status": "active"})
        if session is None:
            return None
        return VotingSessionDetail(voting_session=session, votes=await self._votes(session.id))

    async def get_all_sessions(self) -> List[VotingSessionDetail]:
        sessions = await self.store.voting_sessions.find_many(order_by="created_at", descending=True)
        return [VotingSessionDetail(voting_session=s, votes=await self._votes(s.id)) for s in sessions]

    # -- tally helpers ---------------------------------------------------------

    async def _votes(self, session_id: str) -> List[Vote]:
        return await self.store.votes.find_many({"voting_session_id": session_id}, order_by="created_at")

    @staticmethod
    def _count(session: VotingSession, votes: List[Vote]) -> Dict[str, int]:
        vote_count = {pid: 0 for pid in session.tied_participants}
        for vote in votes:
            vote_count[vote.target_participant_id] = vote_count.get(vote.target_participant_id, 0) + 1
        return vote_count

    def _pick_eliminated(self, vote_count: Dict[str, int],
                         rng: Optional[random.Random] = None) -> Optional[str]:
        max_votes = max(vote_count.values(), default=0)
        if max_votes == 0:
            return None
        leaders = [pid for pid, count in vote_count.items() if count == max_votes]
        if len(leaders) == 1:
            return leaders[0]
        return (rng or self.rng).choice(leaders)

    async def _results(self, session: VotingSession, votes: List[Vote],
                       vote_count: Dict[str, int], eliminated_id: Optional[str]) -> VotingResults:
        eliminated = None
        if eliminated_id is not None:
            participant = await self.participants.find_one(eliminated_id)
            if participant is not None:
                eliminated = await self.participants.view(participant)
        return VotingResults(
            voting_session=session,
            votes=votes,
            vote_count=vote_count,
            total_votes=len(votes),
            eliminated_participant=eliminated,
        )
