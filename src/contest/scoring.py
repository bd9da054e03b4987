"""
Leaderboard scoring.

Raw votes are turned into one ranking in four steps:

1. Global baseline: the mean of every vote per criterion.
2. Local statistic: the median of a submission's votes per criterion.
3. Bayesian smoothing: ``(v / (v + M)) * median + (M / (v + M)) * mean``
   where ``v`` is the submission's vote count and ``M`` a pseudo-count of
   phantom votes, so lightly voted entries are pulled toward the baseline.
4. Weighted composite of the smoothed criteria.

Criteria are stored ×200 (a 1-5 vote maps to 200-1000) and the composite
×2000 (2000-10000); the extra digit on the final score reduces ties, at the
cost of the two fields using different units.
"""

from collections import defaultdict
from dataclasses import dataclass, fields
from typing import Dict, Iterable, List, Optional, Sequence

from snowflake import SnowflakeGenerator
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.db.models import next_snowflake
from core.log import get_logger

from .constants import (
    CRITERION_SCALE,
    FINAL_SCALE,
    SMOOTHING_PSEUDO_VOTES,
    WEIGHT_CLARITY,
    WEIGHT_ORIGINALITY,
    WEIGHT_OVERALL,
    WEIGHT_PROBLEM_FIT,
    WEIGHT_STYLE,
)
from .models import Score, Submission, Vote

logger = get_logger(__name__)


@dataclass(frozen=True)
class Criteria:
    """One value per judging criterion."""

    problem_fit: float
    clarity: float
    style: float
    originality: float
    overall: float

    @classmethod
    def from_vote(cls, vote: Vote) -> "Criteria":
        return cls(
            problem_fit=vote.problem_fit_score,
            clarity=vote.clarity_score,
            style=vote.style_interpretation_score,
            originality=vote.originality_score,
            overall=vote.overall_quality_score,
        )

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


WEIGHTS = Criteria(
    problem_fit=WEIGHT_PROBLEM_FIT,
    clarity=WEIGHT_CLARITY,
    style=WEIGHT_STYLE,
    originality=WEIGHT_ORIGINALITY,
    overall=WEIGHT_OVERALL,
)


@dataclass(frozen=True)
class ComputedScore:
    submission_id: int
    vote_count: int
    medians: Criteria
    smoothed: Criteria
    weighted: float

    def to_row(self, score_id: int) -> Score:
        return Score(
            id=score_id,
            submission_id=self.submission_id,
            problem_fit_score=scale_criterion(self.smoothed.problem_fit),
            visual_clarity_score=scale_criterion(self.smoothed.clarity),
            style_interpretation_score=scale_criterion(self.smoothed.style),
            originality_score=scale_criterion(self.smoothed.originality),
            overall_quality_score=scale_criterion(self.smoothed.overall),
            final_score=scale_final(self.weighted),
        )


@dataclass
class ScoringResult:
    scored: List[ComputedScore]
    skipped_submission_ids: List[int]
    global_means: Criteria


def median(values: Iterable[float]) -> Optional[float]:
    """Median of ``values``; the mean of the middle pair for even counts."""
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return None
    if n % 2 == 1:
        return float(ordered[n // 2])
    return (ordered[n // 2 - 1] + ordered[n // 2]) / 2.0


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def bayesian_smooth(
    local: float,
    global_mean: float,
    vote_count: int,
    pseudo_votes: float = SMOOTHING_PSEUDO_VOTES,
) -> float:
    total = vote_count + pseudo_votes
    return (vote_count / total) * local + (pseudo_votes / total) * global_mean


def weighted_composite(criteria: Criteria, weights: Criteria = WEIGHTS) -> float:
    return (
        criteria.problem_fit * weights.problem_fit
        + criteria.clarity * weights.clarity
        + criteria.style * weights.style
        + criteria.originality * weights.originality
        + criteria.overall * weights.overall
    )


def scale_criterion(value: float) -> int:
    return int(value * CRITERION_SCALE)


def scale_final(value: float) -> int:
    return int(value * FINAL_SCALE)


def _per_criterion(votes: Sequence[Criteria], reducer) -> Criteria:
    return Criteria(
        **{
            f.name: reducer([getattr(v, f.name) for v in votes])
            for f in fields(Criteria)
        }
    )


def global_baseline(votes: Sequence[Criteria]) -> Criteria:
    """Per-criterion mean over every vote; 0 when there are no votes."""
    return _per_criterion(votes, lambda values: mean(values) or 0.0)


def compute_scores(
    votes: Sequence[Vote],
    submission_ids: Sequence[int],
    pseudo_votes: float = SMOOTHING_PSEUDO_VOTES,
) -> ScoringResult:
    """Score every submission in ``submission_ids`` that received a vote."""
    by_submission: Dict[int, List[Criteria]] = defaultdict(list)
    all_criteria: List[Criteria] = []
    for vote in votes:
        criteria = Criteria.from_vote(vote)
        by_submission[vote.submission_id].append(criteria)
        all_criteria.append(criteria)

    baseline = global_baseline(all_criteria)

    scored: List[ComputedScore] = []
    skipped: List[int] = []
    for submission_id in submission_ids:
        submission_votes = by_submission.get(submission_id)
        if not submission_votes:
            logger.info("Skipping submission %s - no votes received", submission_id)
            skipped.append(submission_id)
            continue

        v = len(submission_votes)
        medians = _per_criterion(submission_votes, median)
        smoothed = Criteria(
            **{
                name: bayesian_smooth(
                    local, getattr(baseline, name), v, pseudo_votes
                )
                for name, local in medians.as_dict().items()
            }
        )
        scored.append(
            ComputedScore(
                submission_id=submission_id,
                vote_count=v,
                medians=medians,
                smoothed=smoothed,
                weighted=weighted_composite(smoothed),
            )
        )

    return ScoringResult(
        scored=scored, skipped_submission_ids=skipped, global_means=baseline
    )


class ScoringEngine:
    """Rebuilds the score table from the current votes."""

    def __init__(
        self,
        id_generator: SnowflakeGenerator,
        pseudo_votes: float = SMOOTHING_PSEUDO_VOTES,
    ):
        self.id_generator = id_generator
        self.pseudo_votes = pseudo_votes

    async def run(self, session: AsyncSession) -> ScoringResult:
        """Delete every score and insert the rebuilt batch.

        Runs inside the caller's transaction so readers never see a
        partially rebuilt leaderboard.
        """
        await session.execute(delete(Score))

        votes = (
            (await session.execute(select(Vote).order_by(Vote.id))).scalars().all()
        )
        submission_ids = (
            await session.execute(select(Submission.id).order_by(Submission.id))
        ).scalars().all()

        result = compute_scores(votes, submission_ids, self.pseudo_votes)
        for computed in result.scored:
            session.add(computed.to_row(next_snowflake(self.id_generator)))
        await session.flush()

        logger.info(
            "Generated %d scores from %d votes (%d submissions skipped)",
            len(result.scored),
            len(votes),
            len(result.skipped_submission_ids),
        )
        return result
