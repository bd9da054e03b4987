"""
Tests for the competition clock.
"""

import pytest
from sqlalchemy import delete, func, select

from contest.clock import CompetitionClock, CompetitionPhase, determine_phase
from contest.gate import get_config
from contest.models import CompetitionConfig, Score, VoteAssignment
from contest.tests.factories import (
    insert_submission,
    insert_vote,
    make_user,
    set_windows,
    utc,
)


class ExplodingEngine:
    """Deletes the table it owns and then fails, like a crash mid-rebuild."""

    def __init__(self, table):
        self.table = table
        self.calls = 0

    async def run(self, session):
        self.calls += 1
        await session.execute(delete(self.table))
        raise RuntimeError("engine failure")


async def _count(service, model):
    async with service.async_session() as session:
        return (
            await session.execute(select(func.count()).select_from(model))
        ).scalar_one()


async def _config(service) -> CompetitionConfig:
    async with service.async_session() as session:
        return await get_config(session)


async def _seed_contest(service, n=4):
    """n users who each submitted, and one vote on every submission."""
    users = [await make_user(service) for _ in range(n)]
    submissions = [await insert_submission(service, u) for u in users]
    for i, submission in enumerate(submissions):
        reviewer = users[(i + 1) % n]
        await insert_vote(service, reviewer, submission.id, (3, 4, 5, 4, 3))
    return users, submissions


class TestDeterminePhase:
    def _config(self, **kwargs):
        values = {
            "submission_start": utc(hours=-4),
            "submission_end": utc(hours=-3),
            "voting_start": utc(hours=-2),
            "voting_end": utc(hours=-1),
            "assigned": False,
            "created_scores": False,
        }
        values.update(kwargs)
        return CompetitionConfig(id=1, show_leaderboard=False, **values)

    def test_phases_follow_the_windows(self):
        now = utc()
        assert (
            determine_phase(self._config(submission_start=utc(hours=1)), now)
            == CompetitionPhase.PRE_SUBMISSION
        )
        assert (
            determine_phase(self._config(submission_end=utc(hours=1)), now)
            == CompetitionPhase.SUBMITTING
        )
        assert (
            determine_phase(self._config(voting_start=utc(hours=1)), now)
            == CompetitionPhase.ASSIGNING_ELIGIBLE
        )
        assert (
            determine_phase(
                self._config(assigned=True, voting_start=utc(hours=1)), now
            )
            == CompetitionPhase.ASSIGNED
        )
        assert (
            determine_phase(self._config(assigned=True, voting_end=utc(hours=1)), now)
            == CompetitionPhase.VOTING
        )
        assert (
            determine_phase(self._config(assigned=True), now)
            == CompetitionPhase.SCORING_ELIGIBLE
        )
        assert (
            determine_phase(self._config(assigned=True, created_scores=True), now)
            == CompetitionPhase.SCORED
        )

    def test_unset_windows_are_pre_submission(self):
        config = CompetitionConfig(id=1, show_leaderboard=False)
        assert determine_phase(config, utc()) == CompetitionPhase.PRE_SUBMISSION


class TestCompetitionClock:
    @pytest.mark.asyncio
    async def test_tick_without_config_is_noop(self, service):
        await _seed_contest(service)

        result = await service.tick()

        assert not result.config_found
        assert not result.assigned and not result.scored
        assert await _count(service, VoteAssignment) == 0

    @pytest.mark.asyncio
    async def test_nothing_runs_while_submissions_are_open(self, service):
        await _seed_contest(service)
        await set_windows(
            service, utc(hours=-1), utc(hours=1), utc(hours=2), utc(hours=3)
        )

        result = await service.tick()

        assert result.config_found
        assert result.phase == CompetitionPhase.SUBMITTING
        assert not result.assigned
        assert await _count(service, VoteAssignment) == 0

    @pytest.mark.asyncio
    async def test_assignment_runs_once_after_submission_close(self, service):
        await _seed_contest(service, n=5)
        await set_windows(
            service, utc(hours=-2), utc(hours=-1), utc(hours=1), utc(hours=2)
        )

        first = await service.tick()
        async with service.async_session() as session:
            ids_after_first = set(
                (await session.execute(select(VoteAssignment.id))).scalars().all()
            )
        second = await service.tick()
        async with service.async_session() as session:
            ids_after_second = set(
                (await session.execute(select(VoteAssignment.id))).scalars().all()
            )

        assert first.assigned and not first.scored
        assert not second.assigned, "flag must stop the phase from re-running"
        assert ids_after_first == ids_after_second
        assert len(ids_after_first) == 5 * 4
        assert (await _config(service)).assigned

    @pytest.mark.asyncio
    async def test_both_phases_run_in_one_tick_after_voting_close(self, service):
        await _seed_contest(service)
        await set_windows(
            service, utc(hours=-4), utc(hours=-3), utc(hours=-2), utc(hours=-1)
        )

        result = await service.tick()

        assert result.assigned and result.scored
        assert result.failed_phases == []
        config = await _config(service)
        assert config.assigned and config.created_scores
        assert await _count(service, Score) == 4

        again = await service.tick()
        assert not again.assigned and not again.scored
        assert again.phase == CompetitionPhase.SCORED

    @pytest.mark.asyncio
    async def test_failing_phase_rolls_back_and_does_not_block_the_other(
        self, service
    ):
        await _seed_contest(service)
        await service.run_assignment()
        assignments_before = await _count(service, VoteAssignment)
        await set_windows(
            service, utc(hours=-4), utc(hours=-3), utc(hours=-2), utc(hours=-1)
        )

        exploding = ExplodingEngine(VoteAssignment)
        clock = CompetitionClock(
            service.async_session, exploding, service.scoring_engine
        )

        result = await clock.tick()

        assert exploding.calls == 1
        assert result.failed_phases == ["assignment"]
        assert not result.assigned
        assert result.scored, "scoring must still be evaluated"
        assert await _count(service, VoteAssignment) == assignments_before
        config = await _config(service)
        assert not config.assigned
        assert config.created_scores

    @pytest.mark.asyncio
    async def test_failed_phase_is_retried_on_next_tick(self, service):
        await _seed_contest(service)
        await set_windows(
            service, utc(hours=-2), utc(hours=-1), utc(hours=1), utc(hours=2)
        )

        exploding = ExplodingEngine(VoteAssignment)
        clock = CompetitionClock(
            service.async_session, exploding, service.scoring_engine
        )
        await clock.tick()
        await clock.tick()

        assert exploding.calls == 2

    @pytest.mark.asyncio
    async def test_unpersisted_flags_rerun_every_tick(self, service):
        await _seed_contest(service)
        await set_windows(
            service, utc(hours=-4), utc(hours=-3), utc(hours=-2), utc(hours=-1)
        )
        clock = CompetitionClock(
            service.async_session,
            service.assignment_engine,
            service.scoring_engine,
            persist_phase_flags=False,
        )

        first = await clock.tick()
        second = await clock.tick()

        assert first.assigned and first.scored
        assert second.assigned and second.scored
        config = await _config(service)
        assert not config.assigned and not config.created_scores
        assert await _count(service, VoteAssignment) == 4 * 3
        assert await _count(service, Score) == 4

    @pytest.mark.asyncio
    async def test_reset_phases_allows_rerun(self, service):
        await _seed_contest(service)
        await set_windows(
            service, utc(hours=-4), utc(hours=-3), utc(hours=-2), utc(hours=-1)
        )
        await service.tick()

        await service.update_timings({}, reset_phases=True)
        result = await service.tick()

        assert result.assigned and result.scored
