"""
Contest service.

Owns the database engine and the contest engines, and runs the competition
clock as a periodic background task next to the HTTP API:

- Peer review assignment
- Leaderboard scoring
- Phase transitions
- Operator tasks (timings, leaderboard visibility, users, admins)
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from core.db.models import ensure_utc, new_id_generator, next_snowflake
from core.errors import ConfigurationError
from core.log import get_logger

from .assignment import AssignmentEngine, AssignmentResult
from .auth import create_access_token
from .clock import CompetitionClock, TickResult
from .config import ContestConfig
from .constants import (
    DEFAULT_AUTO_PERIOD_MINUTES,
    PHASE_TICK_INTERVAL,
    PHASE_TICK_STARTUP_DELAY,
)
from .errors import BadRequestError, NotFoundError
from .gate import ContestGate, get_config, get_or_create_config, utc_now
from .models import Admin, CompetitionConfig, Score, User
from .scoring import ScoringEngine, ScoringResult

logger = get_logger(__name__)

TIMING_FIELDS = ("submission_start", "submission_end", "voting_start", "voting_end")


def auto_timings(
    period_minutes: int = DEFAULT_AUTO_PERIOD_MINUTES,
    now: Optional[datetime] = None,
) -> Dict[str, datetime]:
    """Four timestamps spaced ``period_minutes`` apart, the first one period
    from now, so voting opens one period after submissions close."""
    if period_minutes <= 0:
        raise BadRequestError("period must be a positive number of minutes")
    step = timedelta(minutes=period_minutes)
    start = (now or utc_now()) + step
    return {name: start + step * i for i, name in enumerate(TIMING_FIELDS)}


class ContestService:
    """Core contest service logic."""

    def __init__(self, config: ContestConfig):
        self.config = config
        self.db_url = config.settings.get("database_url")
        self.jwt_secret: Optional[str] = config.settings.get("jwt_secret")
        self.auto_create_tables = bool(config.settings.get("auto_create_tables", False))

        self.phase_tick_interval = int(
            config.settings.get("phase_tick_interval", PHASE_TICK_INTERVAL)
        )
        self.persist_phase_flags = bool(
            config.settings.get("persist_phase_flags", True)
        )
        self.run_scheduler = bool(config.settings.get("run_scheduler", True))

        # Background tasks
        self._running = False
        self._phase_tick_task: Optional[asyncio.Task] = None

        # ID generator
        self.id_generator = new_id_generator()

        # Database
        self.engine: Optional[AsyncEngine] = None
        self.async_session: Optional[async_sessionmaker[AsyncSession]] = None

        # Contest engines
        self.assignment_engine = AssignmentEngine(self.id_generator)
        self.scoring_engine = ScoringEngine(self.id_generator)
        self.gate = ContestGate(self.id_generator)
        self.clock: Optional[CompetitionClock] = None

    async def startup(self) -> None:
        """Initialize the contest service without starting background tasks."""
        logger.info("Initializing Design Contest Service")

        await self._init_database()

        if not self.jwt_secret:
            logger.warning("No jwt_secret configured; every bearer token is rejected")

        self.clock = CompetitionClock(
            self.async_session,
            self.assignment_engine,
            self.scoring_engine,
            persist_phase_flags=self.persist_phase_flags,
        )

        self._running = True
        logger.info("Design Contest Service initialized successfully")

    async def start_background_tasks(self) -> None:
        """Start background tasks after FastAPI is ready."""
        if not self.run_scheduler:
            logger.info("Competition clock disabled (run_scheduler=false)")
            return

        logger.info(
            f"Starting competition clock in {PHASE_TICK_STARTUP_DELAY} seconds..."
        )
        await asyncio.sleep(PHASE_TICK_STARTUP_DELAY)
        self._phase_tick_task = asyncio.create_task(self._periodic_phase_tick())

        logger.info(
            f"All background tasks started. "
            f"Phase tick interval: {self.phase_tick_interval}s"
        )

    async def shutdown(self) -> None:
        """Shutdown the contest service."""
        logger.info("Shutting down Design Contest Service")

        self._running = False

        if self._phase_tick_task:
            logger.info("Cancelling phase_tick task")
            self._phase_tick_task.cancel()
            try:
                await self._phase_tick_task
            except asyncio.CancelledError:
                logger.debug("phase_tick task cancelled")
            self._phase_tick_task = None

        if self.engine:
            await self.engine.dispose()
            self.engine = None

        logger.info("Design Contest Service shut down")

    async def _init_database(self) -> None:
        """Initialize database connection."""
        if not self.db_url:
            raise ConfigurationError("database_url is not configured")

        engine_kwargs = {"echo": False, "pool_pre_ping": True}
        if not self.db_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=20, max_overflow=0)
        self.engine = create_async_engine(self.db_url, **engine_kwargs)

        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

        if self.auto_create_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database tables created")

        logger.info("Database connection initialized")

    async def _periodic_phase_tick(self) -> None:
        """Periodically advance the competition through its phases."""
        logger.info("Starting periodic phase tick task")

        while self._running:
            try:
                result = await self.tick()
                if result.failed_phases:
                    logger.warning(
                        "Phase tick finished with failures: %s",
                        ", ".join(result.failed_phases),
                    )
            except Exception as e:
                logger.error("Error in periodic phase tick: %s", e)

            await asyncio.sleep(self.phase_tick_interval)

    # Competition phases

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """One orchestrator pass. Phase failures are logged, not raised."""
        return await self.clock.tick(now)

    async def run_assignment(self) -> AssignmentResult:
        """Rebuild vote assignments now, regardless of the clock."""
        async with self.async_session() as session:
            async with session.begin():
                return await self.assignment_engine.run(session)

    async def run_scoring(self) -> ScoringResult:
        """Rebuild the leaderboard now, regardless of the clock."""
        async with self.async_session() as session:
            async with session.begin():
                return await self.scoring_engine.run(session)

    # Operator tasks

    async def update_timings(
        self,
        timings: Dict[str, Optional[datetime]],
        reset_phases: bool = False,
    ) -> CompetitionConfig:
        """Set the given window bounds, creating the configuration if needed.

        Bounds missing from ``timings`` keep their current value.
        """
        unknown = set(timings) - set(TIMING_FIELDS)
        if unknown:
            raise BadRequestError(f"unknown timing fields: {sorted(unknown)}")

        async with self.async_session() as session:
            async with session.begin():
                config = await get_or_create_config(session)
                for name, value in timings.items():
                    setattr(config, name, ensure_utc(value))
                if reset_phases:
                    config.assigned = False
                    config.created_scores = False
            await session.refresh(config)

        logger.info(
            "Updated competition timings: %s",
            ", ".join(f"{k}={v}" for k, v in timings.items()) or "no changes",
        )
        return config

    async def set_show_leaderboard(self, show: bool) -> CompetitionConfig:
        async with self.async_session() as session:
            async with session.begin():
                config = await get_config(session, for_update=True)
                if config is None:
                    raise NotFoundError("competition configuration does not exist")
                config.show_leaderboard = show
            await session.refresh(config)

        logger.info("Leaderboard visibility set to %s", show)
        return config

    async def leaderboard(self) -> List[Score]:
        async with self.async_session() as session:
            result = await session.execute(
                select(Score).order_by(Score.final_score.desc(), Score.id)
            )
            return list(result.scalars().all())

    # Users

    async def find_user_by_email(
        self, session: AsyncSession, email: str
    ) -> Optional[User]:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def add_user(self, email: str, name: str) -> User:
        email = email.strip()
        async with self.async_session() as session:
            async with session.begin():
                if await self.find_user_by_email(session, email) is not None:
                    raise BadRequestError(f"user {email} already exists")
                user = User(
                    id=next_snowflake(self.id_generator),
                    pid=str(uuid.uuid4()),
                    email=email,
                    name=name.strip(),
                )
                session.add(user)
            await session.refresh(user)

        logger.info("Added user %s", email)
        return user

    async def add_users(
        self, registrations: Sequence[Tuple[str, str]]
    ) -> Tuple[List[User], List[str]]:
        """Add ``(email, name)`` pairs, skipping emails already registered."""
        added: List[User] = []
        skipped: List[str] = []
        for email, name in registrations:
            try:
                added.append(await self.add_user(email, name))
            except BadRequestError:
                logger.info("User %s already exists, skipping", email)
                skipped.append(email)
        return added, skipped

    async def add_admin(self, email: str) -> Admin:
        async with self.async_session() as session:
            async with session.begin():
                user = await self.find_user_by_email(session, email)
                if user is None:
                    raise NotFoundError(f"user {email} not found")
                result = await session.execute(
                    select(Admin).where(Admin.user_id == user.id)
                )
                admin = result.scalar_one_or_none()
                if admin is None:
                    admin = Admin(id=next_snowflake(self.id_generator), user_id=user.id)
                    session.add(admin)
                    logger.info("Granted admin to %s", email)

        return admin

    async def issue_token(self, email: str, ttl_seconds: Optional[int] = None) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("jwt_secret is not configured")
        async with self.async_session() as session:
            user = await self.find_user_by_email(session, email)
        if user is None:
            raise NotFoundError(f"user {email} not found")
        if ttl_seconds is None:
            return create_access_token(user.pid, self.jwt_secret)
        return create_access_token(user.pid, self.jwt_secret, ttl_seconds=ttl_seconds)
