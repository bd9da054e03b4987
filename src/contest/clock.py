"""
Competition clock.

Advances the contest through its phases based on the configured windows:

    PRE_SUBMISSION -> SUBMITTING -> ASSIGNING_ELIGIBLE -> ASSIGNED
        -> VOTING -> SCORING_ELIGIBLE -> SCORED

A tick may be invoked any number of times. Once submissions close the
assignment engine runs and ``assigned`` is set; once voting closes the
scoring engine runs and ``created_scores`` is set. Each phase runs in its
own transaction against a locked configuration row, so a failing phase is
rolled back on its own and never prevents the other from being evaluated.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.db.models import ensure_utc
from core.log import get_logger

from .assignment import AssignmentEngine
from .gate import get_config, utc_now
from .models import CompetitionConfig
from .scoring import ScoringEngine

logger = get_logger(__name__)


class CompetitionPhase(str, enum.Enum):
    PRE_SUBMISSION = "pre_submission"
    SUBMITTING = "submitting"
    ASSIGNING_ELIGIBLE = "assigning_eligible"
    ASSIGNED = "assigned"
    VOTING = "voting"
    SCORING_ELIGIBLE = "scoring_eligible"
    SCORED = "scored"


class PhaseEngine(Protocol):
    async def run(self, session: AsyncSession): ...


def _passed(deadline: Optional[datetime], now: datetime) -> bool:
    return deadline is not None and ensure_utc(now) > ensure_utc(deadline)


def _before(start: Optional[datetime], now: datetime) -> bool:
    return start is None or ensure_utc(now) < ensure_utc(start)


def determine_phase(config: CompetitionConfig, now: datetime) -> CompetitionPhase:
    """Describe where the contest stands. Informational only."""
    if _before(config.submission_start, now):
        return CompetitionPhase.PRE_SUBMISSION
    if not _passed(config.submission_end, now):
        return CompetitionPhase.SUBMITTING
    if not config.assigned:
        return CompetitionPhase.ASSIGNING_ELIGIBLE
    if _before(config.voting_start, now):
        return CompetitionPhase.ASSIGNED
    if not _passed(config.voting_end, now):
        return CompetitionPhase.VOTING
    if not config.created_scores:
        return CompetitionPhase.SCORING_ELIGIBLE
    return CompetitionPhase.SCORED


@dataclass
class TickResult:
    config_found: bool = False
    phase: Optional[CompetitionPhase] = None
    assigned: bool = False
    scored: bool = False
    failed_phases: List[str] = field(default_factory=list)


class CompetitionClock:
    """Runs the phase transitions that are due."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        assignment_engine: AssignmentEngine,
        scoring_engine: ScoringEngine,
        persist_phase_flags: bool = True,
    ):
        self.session_factory = session_factory
        self.assignment_engine = assignment_engine
        self.scoring_engine = scoring_engine
        self.persist_phase_flags = persist_phase_flags
        if not persist_phase_flags:
            logger.warning(
                "Phase flags are not persisted; due phases re-run on every tick"
            )

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        now = now or utc_now()
        result = TickResult()

        async with self.session_factory() as session:
            config = await get_config(session)
            if config is None:
                logger.debug("No competition configuration, skipping tick")
                return result
            result.config_found = True
            result.phase = determine_phase(config, now)
        logger.debug("Competition phase at %s: %s", now.isoformat(), result.phase)

        result.assigned = await self._run_phase(
            "assignment",
            "submission_end",
            "assigned",
            self.assignment_engine,
            now,
            result,
        )
        result.scored = await self._run_phase(
            "scoring",
            "voting_end",
            "created_scores",
            self.scoring_engine,
            now,
            result,
        )
        return result

    async def _run_phase(
        self,
        name: str,
        deadline_field: str,
        flag_field: str,
        engine: PhaseEngine,
        now: datetime,
        result: TickResult,
    ) -> bool:
        """Run one phase in its own transaction if it is due.

        The configuration row is re-read under ``FOR UPDATE`` so concurrent
        ticks on other processes serialize on it and see the flag written
        by whichever ran first.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    config = await get_config(session, for_update=True)
                    if config is None:
                        return False
                    if not _passed(getattr(config, deadline_field), now):
                        return False
                    if getattr(config, flag_field):
                        return False

                    logger.info("Running %s phase", name)
                    await engine.run(session)
                    if self.persist_phase_flags:
                        setattr(config, flag_field, True)
        except Exception:
            logger.exception("Competition %s phase failed", name)
            result.failed_phases.append(name)
            return False

        logger.info("Completed %s phase", name)
        return True
