"""
Request-time policy for submissions and votes.

Every mutating request passes through here before it writes: the relevant
time window must be open (both bounds set, inclusive), a user may hold one
submission and one vote per submission, and only owners or admins may touch
an entry. Uniqueness is checked up front for a friendly error and again by
the storage constraints, which settle races between concurrent requests.
"""

from datetime import datetime, timezone
from typing import List, Optional

from snowflake import SnowflakeGenerator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.db.models import ensure_utc, next_snowflake
from core.log import get_logger

from .constants import MAX_VOTE_SCORE, MIN_VOTE_SCORE
from .errors import (
    BadRequestError,
    DuplicateSubmissionError,
    DuplicateVoteError,
    InvalidScoreError,
    NotFoundError,
    UnauthorizedError,
    WindowClosedError,
)
from .models import (
    Admin,
    CompetitionConfig,
    ConfigUpdateRequest,
    Submission,
    SubmissionRequest,
    User,
    Vote,
    VoteAssignment,
    VoteRequest,
)

logger = get_logger(__name__)

CONFIG_ID = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def window_open(
    start: Optional[datetime], end: Optional[datetime], now: datetime
) -> bool:
    """True when ``start <= now <= end``. A missing bound closes the window."""
    if start is None or end is None:
        return False
    return ensure_utc(start) <= ensure_utc(now) <= ensure_utc(end)


def ensure_submission_window(
    config: Optional[CompetitionConfig], now: datetime
) -> None:
    if config is None or not window_open(
        config.submission_start, config.submission_end, now
    ):
        raise WindowClosedError("submissions are not currently open")


def ensure_voting_window(config: Optional[CompetitionConfig], now: datetime) -> None:
    if config is None or not window_open(config.voting_start, config.voting_end, now):
        raise WindowClosedError("voting is not currently open")


def validate_vote_scores(payload: VoteRequest) -> None:
    for name, value in payload.criteria().items():
        if not MIN_VOTE_SCORE <= value <= MAX_VOTE_SCORE:
            raise InvalidScoreError(name, value)


# Configuration access


async def get_config(
    session: AsyncSession, for_update: bool = False
) -> Optional[CompetitionConfig]:
    query = select(CompetitionConfig).where(CompetitionConfig.id == CONFIG_ID)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_config(session: AsyncSession) -> CompetitionConfig:
    """Load the singleton row, creating it on first write."""
    config = await get_config(session, for_update=True)
    if config is None:
        config = CompetitionConfig(id=CONFIG_ID, show_leaderboard=False)
        session.add(config)
        await session.flush()
        logger.info("Created competition configuration")
    return config


async def update_windows(
    session: AsyncSession, windows: ConfigUpdateRequest
) -> CompetitionConfig:
    config = await get_or_create_config(session)
    config.submission_start = ensure_utc(windows.submission_start)
    config.submission_end = ensure_utc(windows.submission_end)
    config.voting_start = ensure_utc(windows.voting_start)
    config.voting_end = ensure_utc(windows.voting_end)
    await session.flush()
    return config


# Capability predicates


async def is_admin(session: AsyncSession, user_id: int) -> bool:
    result = await session.execute(select(Admin.id).where(Admin.user_id == user_id))
    return result.first() is not None


async def is_assigned(session: AsyncSession, user_id: int, submission_id: int) -> bool:
    result = await session.execute(
        select(VoteAssignment.id).where(
            VoteAssignment.user_id == user_id,
            VoteAssignment.submission_id == submission_id,
        )
    )
    return result.first() is not None


async def can_view_submission(
    session: AsyncSession, user: User, submission: Submission
) -> bool:
    if submission.user_id == user.id:
        return True
    if await is_admin(session, user.id):
        return True
    return await is_assigned(session, user.id, submission.id)


async def can_edit_submission(
    session: AsyncSession, user: User, submission: Submission
) -> bool:
    return submission.user_id == user.id or await is_admin(session, user.id)


def _apply_submission(submission: Submission, payload: SubmissionRequest) -> None:
    for name, value in payload.model_dump().items():
        setattr(submission, name, value)


def _apply_vote(vote: Vote, payload: VoteRequest) -> None:
    for name, value in payload.criteria().items():
        setattr(vote, name, value)


class ContestGate:
    """Checks and performs submission and vote mutations."""

    def __init__(self, id_generator: SnowflakeGenerator):
        self.id_generator = id_generator

    # Submissions

    async def find_submission_by_user(
        self, session: AsyncSession, user_id: int
    ) -> Optional[Submission]:
        result = await session.execute(
            select(Submission).where(Submission.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def load_submission(
        self, session: AsyncSession, submission_id: int
    ) -> Submission:
        submission = await session.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError(f"submission {submission_id} not found")
        return submission

    async def create_submission(
        self,
        session: AsyncSession,
        user: User,
        payload: SubmissionRequest,
        now: Optional[datetime] = None,
    ) -> Submission:
        if await self.find_submission_by_user(session, user.id) is not None:
            raise DuplicateSubmissionError("submission already exists.")

        ensure_submission_window(await get_config(session), now or utc_now())

        submission = Submission(id=next_snowflake(self.id_generator), user_id=user.id)
        _apply_submission(submission, payload)
        session.add(submission)
        try:
            await session.flush()
        except IntegrityError as exc:
            await session.rollback()
            raise DuplicateSubmissionError("submission already exists.") from exc

        logger.info("User %s submitted entry %s", user.id, submission.id)
        return submission

    async def view_submission(
        self, session: AsyncSession, user: User, submission_id: int
    ) -> Submission:
        submission = await self.load_submission(session, submission_id)
        if not await can_view_submission(session, user, submission):
            raise UnauthorizedError("unauthorized access.")
        return submission

    async def update_submission(
        self,
        session: AsyncSession,
        user: User,
        submission_id: int,
        payload: SubmissionRequest,
    ) -> Submission:
        submission = await self.load_submission(session, submission_id)
        if not await can_edit_submission(session, user, submission):
            raise UnauthorizedError("unauthorized access.")

        _apply_submission(submission, payload)
        await session.flush()
        return submission

    # Votes

    async def list_assignments(
        self, session: AsyncSession, user: User
    ) -> List[VoteAssignment]:
        result = await session.execute(
            select(VoteAssignment)
            .where(VoteAssignment.user_id == user.id)
            .order_by(VoteAssignment.id)
        )
        return list(result.scalars().all())

    async def list_votes(self, session: AsyncSession, user: User) -> List[Vote]:
        result = await session.execute(
            select(Vote).where(Vote.user_id == user.id).order_by(Vote.id)
        )
        return list(result.scalars().all())

    async def create_vote(
        self,
        session: AsyncSession,
        user: User,
        payload: VoteRequest,
        now: Optional[datetime] = None,
    ) -> Vote:
        validate_vote_scores(payload)

        existing = await session.execute(
            select(Vote.id).where(
                Vote.user_id == user.id,
                Vote.submission_id == payload.submission_id,
            )
        )
        if existing.first() is not None:
            raise DuplicateVoteError("you have already voted on this submission")

        ensure_voting_window(await get_config(session), now or utc_now())
        await self.load_submission(session, payload.submission_id)

        vote = Vote(
            id=next_snowflake(self.id_generator),
            user_id=user.id,
            submission_id=payload.submission_id,
        )
        _apply_vote(vote, payload)
        session.add(vote)
        try:
            await session.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent vote for the same pair
            await session.rollback()
            raise DuplicateVoteError(
                "you have already voted on this submission"
            ) from exc

        logger.debug(
            "User %s voted on submission %s", user.id, payload.submission_id
        )
        return vote

    async def update_vote(
        self,
        session: AsyncSession,
        user: User,
        vote_id: int,
        payload: VoteRequest,
        now: Optional[datetime] = None,
    ) -> Vote:
        vote = await session.get(Vote, vote_id)
        if vote is None:
            raise NotFoundError(f"vote {vote_id} not found")
        if vote.user_id != user.id:
            raise UnauthorizedError("unauthorized access.")

        validate_vote_scores(payload)
        if payload.submission_id != vote.submission_id:
            raise BadRequestError("a vote cannot be moved to another submission")

        ensure_voting_window(await get_config(session), now or utc_now())

        _apply_vote(vote, payload)
        await session.flush()
        return vote
