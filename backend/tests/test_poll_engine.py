"""Tests for ranked polls: activation, ranking submission, results and scoring."""
import sys
import os
import asyncio

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import PASSWORD
from errors import ErrorKind, NotFoundError
from models import RankingEntry
from poll_engine import PollService, _points_for


def ranks(**by_id):
    return [RankingEntry(participant_id=pid, rank=r) for pid, r in by_id.items()]


async def active_poll(polls, title="Best knight"):
    poll = await polls.create_poll(title, time_limit=120)
    return await polls.activate_poll(poll.id)


class TestPoints:
    def test_points_by_average(self):
        assert _points_for(1) == 90
        assert _points_for(1.5) == 85
        assert _points_for(1.25) == 88  # 87.5 rounds up
        assert _points_for(4.5) == 55

    def test_points_never_negative(self):
        assert _points_for(12) == 0

    def test_unranked_scores_nothing(self):
        assert _points_for(0) == 0


class TestCreateAndActivate:
    @pytest.mark.asyncio
    async def test_create_is_pending(self, polls):
        poll = await polls.create_poll("  Bravest  ", "who?")
        assert poll.status == "pending"
        assert not poll.is_active
        assert poll.title == "Bravest"
        assert poll.time_limit == 300

    @pytest.mark.asyncio
    async def test_create_validation(self, polls):
        with pytest.raises(ValueError):
            await polls.create_poll("   ")
        with pytest.raises(ValueError):
            await polls.create_poll("Short", time_limit=30)

    @pytest.mark.asyncio
    async def test_activate_missing(self, polls):
        with pytest.raises(NotFoundError):
            await polls.activate_poll("missing")

    @pytest.mark.asyncio
    async def test_activate_sets_deadline_and_timer(self, polls, scheduler, notifier, clock):
        poll = await active_poll(polls)
        assert poll.is_active and poll.status == "active"
        assert poll.poll_ends_at == clock.now + 120
        assert scheduler.is_armed(f"poll:{poll.id}")
        assert notifier.of("pollActivated")[0][1]["poll"]["id"] == poll.id

    @pytest.mark.asyncio
    async def test_activation_force_completes_other_polls(self, polls, store, scheduler):
        first = await active_poll(polls, "First")
        second = await active_poll(polls, "Second")

        old = await store.polls.find_one({"id": first.id})
        assert old.status == "completed" and not old.is_active
        assert not scheduler.is_armed(f"poll:{first.id}")
        assert await store.polls.count({"is_active": True}) == 1
        assert (await polls.get_active_poll()).id == second.id

    @pytest.mark.asyncio
    async def test_deadline_timer_ends_poll(self, polls, make_participant, store, notifier, scheduler):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        poll = await polls.create_poll("Quick", time_limit=120)
        await store.polls.update({"id": poll.id}, {"time_limit": 0})
        await polls.activate_poll(poll.id)
        # Nothing before the sleep yields to the loop, so the zero-delay timer fires there
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1}))
        assert result.success
        await asyncio.sleep(0.05)

        ended = await store.polls.find_one({"id": poll.id})
        assert ended.status == "completed" and not ended.is_active
        assert not scheduler.is_armed(f"poll:{poll.id}")
        assert (await store.participants.find_one({"id": p2.id})).score == 90
        assert len(notifier.of("pollEnded")) == 1


class TestSubmitRankings:
    @pytest.mark.asyncio
    async def test_self_rank_writes_nothing(self, polls, make_participant, store):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        poll = await active_poll(polls)
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p1.id: 1, p2.id: 2}))
        assert result.error == ErrorKind.SELF_RANK
        assert await store.poll_rankings.count() == 0

    @pytest.mark.asyncio
    async def test_resubmission_replaces(self, polls, make_participant, store, notifier):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        p3 = await make_participant("P3")
        poll = await active_poll(polls)
        await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1, p3.id: 2}))
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p3.id: 1}))
        assert result.success
        rows = await store.poll_rankings.find_many({"ranker_participant_id": p1.id})
        assert [(r.ranked_participant_id, r.rank) for r in rows] == [(p3.id, 1)]
        assert notifier.of("pollRankingUpdate")[-1][1] == {"poll_id": poll.id}

    @pytest.mark.asyncio
    async def test_invalid_credential(self, polls, make_participant):
        p1 = await make_participant("P1")
        poll = await active_poll(polls)
        result = await polls.submit_rankings(poll.id, p1.id, "nope", [])
        assert result.error == ErrorKind.INVALID_CREDENTIAL

    @pytest.mark.asyncio
    async def test_unknown_and_inactive_poll(self, polls, make_participant):
        p1 = await make_participant("P1")
        pending = await polls.create_poll("Not yet")
        assert (await polls.submit_rankings("missing", p1.id, PASSWORD, [])).error == ErrorKind.POLL_NOT_FOUND
        assert (await polls.submit_rankings(pending.id, p1.id, PASSWORD, [])).error == ErrorKind.POLL_ENDED

    @pytest.mark.asyncio
    async def test_expired_poll(self, polls, make_participant, clock, store):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        poll = await active_poll(polls)
        clock.advance(121)
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1}))
        assert result.error == ErrorKind.POLL_EXPIRED
        assert await store.poll_rankings.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_target(self, polls, make_participant):
        p1 = await make_participant("P1")
        poll = await active_poll(polls)
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(ghost=1))
        assert result.error == ErrorKind.INVALID_PARTICIPANT

    @pytest.mark.asyncio
    async def test_duplicate_ranks_allowed_by_default(self, polls, make_participant):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        p3 = await make_participant("P3")
        poll = await active_poll(polls)
        result = await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1, p3.id: 1}))
        assert result.success

    @pytest.mark.asyncio
    async def test_strict_mode_rejects_duplicates(self, store, participants, notifier, scheduler, clock,
                                                  make_participant):
        strict = PollService(store, participants, notifier, scheduler, clock=clock, strict_rankings=True)
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        p3 = await make_participant("P3")
        poll = await active_poll(strict)

        dup_rank = await strict.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1, p3.id: 1}))
        assert dup_rank.error == ErrorKind.VALIDATION_FAILURE
        dup_target = await strict.submit_rankings(
            poll.id, p1.id, PASSWORD,
            [RankingEntry(participant_id=p2.id, rank=1), RankingEntry(participant_id=p2.id, rank=2)])
        assert dup_target.error == ErrorKind.VALIDATION_FAILURE
        assert await store.poll_rankings.count() == 0


class TestResultsAndEnd:
    async def _scenario(self, polls, make_participant):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        p3 = await make_participant("P3")
        p4 = await make_participant("P4")
        poll = await active_poll(polls)
        await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1, p3.id: 2}))
        await polls.submit_rankings(poll.id, p2.id, PASSWORD, ranks(**{p1.id: 2, p3.id: 1}))
        return (p1, p2, p3, p4), poll

    @pytest.mark.asyncio
    async def test_results_average_and_order(self, polls, make_participant):
        (p1, p2, p3, p4), poll = await self._scenario(polls, make_participant)
        results = await polls.get_poll_results(poll.id)

        rows = [(r.participant_id, r.average_rank, r.total_points) for r in results.results]
        assert rows == [(p2.id, 1.0, 90), (p3.id, 1.5, 85), (p1.id, 2.0, 80), (p4.id, 0.0, 0)]
        assert [e.participant_id for e in results.eliminated_participants] == [p3.id, p1.id, p4.id]

    @pytest.mark.asyncio
    async def test_results_for_missing_poll_raise(self, polls):
        with pytest.raises(NotFoundError):
            await polls.get_poll_results("missing")

    @pytest.mark.asyncio
    async def test_elimination_count_is_configurable(self, store, participants, notifier, scheduler, clock,
                                                     make_participant):
        one = PollService(store, participants, notifier, scheduler, clock=clock, elimination_count=1)
        await make_participant("P1")
        last = await make_participant("P2")
        poll = await one.create_poll("One out")
        results = await one.get_poll_results(poll.id)
        assert [e.participant_id for e in results.eliminated_participants] == [last.id]

    @pytest.mark.asyncio
    async def test_poll_without_rankings(self, polls, make_participant, store):
        people = [await make_participant(name) for name in ("P1", "P2", "P3", "P4")]
        for p in people:
            await store.participants.update({"id": p.id}, {"score": 5})
        poll = await active_poll(polls)

        results = await polls.get_poll_results(poll.id)
        assert [(r.average_rank, r.total_points) for r in results.results] == [(0.0, 0)] * 4
        assert len(results.eliminated_participants) == 3

        assert await polls.end_poll(poll.id) is not None
        assert {p.score for p in await store.participants.find_many()} == {5}

    @pytest.mark.asyncio
    async def test_end_awards_points_once(self, polls, make_participant, store, notifier, scheduler):
        (p1, p2, p3, p4), poll = await self._scenario(polls, make_participant)
        results = await polls.end_poll(poll.id)
        assert results is not None
        assert await polls.end_poll(poll.id) is None

        scores = {p.id: p.score for p in await store.participants.find_many()}
        assert scores == {p1.id: 80, p2.id: 90, p3.id: 85, p4.id: 0}
        ended = await store.polls.find_one({"id": poll.id})
        assert ended.status == "completed" and not ended.is_active
        assert not scheduler.is_armed(f"poll:{poll.id}")
        assert len(notifier.of("pollEnded")) == 1
        assert notifier.names()[-1] == "leaderboardUpdate"

    @pytest.mark.asyncio
    async def test_end_missing_or_pending(self, polls):
        pending = await polls.create_poll("Later")
        assert await polls.end_poll("missing") is None
        assert await polls.end_poll(pending.id) is None


class TestDeleteAndQueries:
    @pytest.mark.asyncio
    async def test_delete_removes_rankings(self, polls, make_participant, store, scheduler):
        p1 = await make_participant("P1")
        p2 = await make_participant("P2")
        poll = await active_poll(polls)
        await polls.submit_rankings(poll.id, p1.id, PASSWORD, ranks(**{p2.id: 1}))

        assert (await polls.delete_poll(poll.id)).success
        assert await store.poll_rankings.count() == 0
        assert not scheduler.is_armed(f"poll:{poll.id}")
        assert (await polls.delete_poll(poll.id)).error == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_listing_newest_first(self, polls, clock):
        first = await polls.create_poll("First")
        clock.advance(1)
        second = await polls.create_poll("Second")
        assert [d.poll.id for d in await polls.get_all_polls()] == [second.id, first.id]
        assert (await polls.get_poll(first.id)).rankings == []
        assert await polls.get_poll("missing") is None
