"""
Peer review assignment.

Once submissions close every participant is asked to review a handful of
other entries. Submissions are shuffled once per run so list position does
not bias who reviews what, then a deterministic rotation hands each reviewer
the next ``k`` entries after their own index, skipping their own entry.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Sequence

from snowflake import SnowflakeGenerator
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.db.models import next_snowflake
from core.log import get_logger

from .constants import MAX_ASSIGNMENTS_PER_REVIEWER
from .models import Submission, User, VoteAssignment

logger = get_logger(__name__)


class Entry(NamedTuple):
    """A submission as seen by the rotation: its id and its owner."""

    submission_id: int
    owner_id: int


@dataclass
class AssignmentResult:
    n_submissions: int
    n_reviewers: int
    per_reviewer: int
    assignments: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(targets) for targets in self.assignments.values())


def assignment_count(n_submissions: int) -> int:
    """Number of reviews each participant receives: ``min(6, n - 1)``."""
    if n_submissions <= 1:
        return 0
    return min(MAX_ASSIGNMENTS_PER_REVIEWER, n_submissions - 1)


def shuffle_submissions(
    entries: Sequence[Entry], rng: Optional[random.Random] = None
) -> List[Entry]:
    """Return a uniform random permutation of ``entries``."""
    shuffled = list(entries)
    (rng or random.Random()).shuffle(shuffled)
    return shuffled


def rotate_assignments(
    shuffled: Sequence[Entry], reviewer_ids: Sequence[int], k: int
) -> Dict[int, List[int]]:
    """Deterministically pick ``k`` targets for each reviewer.

    Reviewer ``i`` scans ``(i + offset) mod n`` for ``offset = 0, 1, ...``
    and takes every entry it does not own. A full lap visits each entry
    once, so targets are distinct and a reviewer owning one entry always
    finds ``n - 1 >= k`` candidates.
    """
    n = len(shuffled)
    assignments: Dict[int, List[int]] = {}
    if n == 0 or k <= 0:
        return {reviewer_id: [] for reviewer_id in reviewer_ids}

    for u_i, reviewer_id in enumerate(reviewer_ids):
        targets: List[int] = []
        offset = 0
        while len(targets) < k and offset < n:
            candidate = shuffled[(u_i + offset) % n]
            if candidate.owner_id != reviewer_id:
                targets.append(candidate.submission_id)
            offset += 1

        if len(targets) < k:
            # Only reachable when a reviewer owns several entries
            logger.warning(
                "Reviewer %s received %d of %d assignments",
                reviewer_id,
                len(targets),
                k,
            )
        assignments[reviewer_id] = targets

    return assignments


class AssignmentEngine:
    """Replaces the vote assignment table with a fresh rotation."""

    def __init__(
        self,
        id_generator: SnowflakeGenerator,
        seed: Optional[int] = None,
    ):
        self.id_generator = id_generator
        self.seed = seed

    async def run(self, session: AsyncSession) -> AssignmentResult:
        """Delete every assignment and insert the new batch.

        Runs inside the caller's transaction; committing or rolling back the
        whole batch is the caller's job.
        """
        submissions = (
            await session.execute(select(Submission).order_by(Submission.id))
        ).scalars().all()
        reviewers = (
            await session.execute(
                select(User.id)
                .join(Submission, Submission.user_id == User.id)
                .order_by(User.id)
            )
        ).scalars().all()

        await session.execute(delete(VoteAssignment))

        n_submissions = len(submissions)
        if n_submissions == 0:
            logger.info("No submissions to assign")
            return AssignmentResult(0, len(reviewers), 0)

        k = assignment_count(n_submissions)
        entries = [Entry(sub.id, sub.user_id) for sub in submissions]
        shuffled = shuffle_submissions(entries, random.Random(self.seed))
        assignments = rotate_assignments(shuffled, reviewers, k)

        for reviewer_id, targets in assignments.items():
            for submission_id in targets:
                session.add(
                    VoteAssignment(
                        id=next_snowflake(self.id_generator),
                        user_id=reviewer_id,
                        submission_id=submission_id,
                    )
                )
                logger.debug(
                    "Assigned submission %s to reviewer %s", submission_id, reviewer_id
                )
        await session.flush()

        result = AssignmentResult(
            n_submissions=n_submissions,
            n_reviewers=len(reviewers),
            per_reviewer=k,
            assignments=assignments,
        )
        logger.info(
            "Assigned %d reviews across %d reviewers (%d each, %d submissions)",
            result.total,
            result.n_reviewers,
            k,
            n_submissions,
        )
        return result
