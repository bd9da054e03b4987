"""
SQLModel models for the design contest database.
"""

from datetime import datetime
from typing import Optional

from pydantic import field_validator
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
)
from sqlalchemy import (
    DateTime as SADateTime,
)
from sqlalchemy import (
    String as SAString,
)
from sqlalchemy import Text as SAText
from sqlmodel import Column, Field, SQLModel

from core.db.models import TimestampMixin, ensure_utc

from .constants import MAX_VOTE_SCORE, MIN_VOTE_SCORE

VOTE_CRITERIA = (
    "problem_fit_score",
    "clarity_score",
    "style_interpretation_score",
    "originality_score",
    "overall_quality_score",
)


# Models for API requests/responses
class ConfigUpdateRequest(SQLModel):
    """Request model for replacing the competition windows."""

    submission_start: Optional[datetime] = None
    submission_end: Optional[datetime] = None
    voting_start: Optional[datetime] = None
    voting_end: Optional[datetime] = None


class ConfigResponse(SQLModel):
    """Response model for the competition configuration."""

    submission_start: Optional[datetime]
    submission_end: Optional[datetime]
    voting_start: Optional[datetime]
    voting_end: Optional[datetime]
    show_leaderboard: bool
    assigned: bool
    created_scores: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(
        "submission_start",
        "submission_end",
        "voting_start",
        "voting_end",
        "updated_at",
        mode="after",
    )
    @classmethod
    def _as_utc(cls, value):
        return ensure_utc(value)


class SubmissionRequest(SQLModel):
    """Request payload for creating or replacing a submission."""

    figma_link: str
    design_image: str
    target_user_and_goal: str
    layout_explanation: str
    style_interpretation: str
    key_trade_off: str
    originality_confirmed: bool
    template_compliance_confirmed: bool
    future_improvements: Optional[str] = None


class SubmissionResponse(SQLModel):
    """Response model for submission data."""

    id: str
    user_id: str
    figma_link: str
    design_image: str
    target_user_and_goal: str
    layout_explanation: str
    style_interpretation: str
    key_trade_off: str
    originality_confirmed: bool
    template_compliance_confirmed: bool
    future_improvements: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _convert_ids(cls, value):
        return str(value)


class VoteAssignmentResponse(SQLModel):
    """Response model for a reviewer's assigned submission."""

    id: str
    user_id: str
    submission_id: str
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", "user_id", "submission_id", mode="before")
    @classmethod
    def _convert_ids(cls, value):
        return str(value)


class VoteRequest(SQLModel):
    """Request payload for casting or replacing a vote.

    Score ranges are checked by the gate so the error names the offending
    field instead of surfacing a generic validation error.
    """

    submission_id: int
    problem_fit_score: int
    clarity_score: int
    style_interpretation_score: int
    originality_score: int
    overall_quality_score: int

    def criteria(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in VOTE_CRITERIA}


class VoteResponse(SQLModel):
    """Response model for vote data."""

    id: str
    user_id: str
    submission_id: str
    problem_fit_score: int
    clarity_score: int
    style_interpretation_score: int
    originality_score: int
    overall_quality_score: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", "user_id", "submission_id", mode="before")
    @classmethod
    def _convert_ids(cls, value):
        return str(value)


class ScoreResponse(SQLModel):
    """Leaderboard row. Criteria are on a 0-1000 scale, final_score on 0-10000."""

    id: str
    submission_id: str
    problem_fit_score: int
    visual_clarity_score: int
    style_interpretation_score: int
    originality_score: int
    overall_quality_score: int
    final_score: int
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", "submission_id", mode="before")
    @classmethod
    def _convert_ids(cls, value):
        return str(value)


# Models for DB tables
class CompetitionConfig(TimestampMixin, SQLModel, table=True):
    """Competition windows and phase flags. At most one row exists."""

    __tablename__ = "configs"

    id: int = Field(default=1, primary_key=True)

    submission_start: Optional[datetime] = Field(
        default=None, sa_column=Column(SADateTime(timezone=True), nullable=True)
    )
    submission_end: Optional[datetime] = Field(
        default=None, sa_column=Column(SADateTime(timezone=True), nullable=True)
    )
    voting_start: Optional[datetime] = Field(
        default=None, sa_column=Column(SADateTime(timezone=True), nullable=True)
    )
    voting_end: Optional[datetime] = Field(
        default=None, sa_column=Column(SADateTime(timezone=True), nullable=True)
    )

    show_leaderboard: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="false"),
    )

    # Phase flags set by the competition clock once a phase has run
    assigned: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="false"),
    )
    created_scores: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="false"),
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_configs_singleton"),  # Ensure only one row
    )


class User(TimestampMixin, SQLModel, table=True):
    """Contest participant."""

    __tablename__ = "users"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    pid: str = Field(
        sa_column=Column(SAString(64), nullable=False, unique=True, index=True)
    )
    email: str = Field(
        sa_column=Column(SAString(256), nullable=False, unique=True, index=True)
    )
    name: str = Field(max_length=256, nullable=False)

    # One-time passcode issued by the identity service
    otp: Optional[str] = Field(default=None, max_length=16, nullable=True)
    otp_sent_at: Optional[datetime] = Field(
        default=None, sa_column=Column(SADateTime(timezone=True), nullable=True)
    )


class Admin(TimestampMixin, SQLModel, table=True):
    """Grants admin capability to a user by existing."""

    __tablename__ = "admins"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id"), nullable=False, unique=True
        )
    )


class Submission(TimestampMixin, SQLModel, table=True):
    """A user's design entry."""

    __tablename__ = "submissions"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id"), nullable=False, index=True
        )
    )

    figma_link: str = Field(sa_column=Column(SAString(512), nullable=False))
    design_image: str = Field(sa_column=Column(SAString(512), nullable=False))
    target_user_and_goal: str = Field(sa_column=Column(SAText, nullable=False))
    layout_explanation: str = Field(sa_column=Column(SAText, nullable=False))
    style_interpretation: str = Field(sa_column=Column(SAText, nullable=False))
    key_trade_off: str = Field(sa_column=Column(SAText, nullable=False))
    originality_confirmed: bool = Field(default=False, nullable=False)
    template_compliance_confirmed: bool = Field(default=False, nullable=False)
    future_improvements: Optional[str] = Field(
        default=None, sa_column=Column(SAText, nullable=True)
    )

    __table_args__ = (
        # One active submission per user
        UniqueConstraint("user_id", name="uq_submissions_user"),
    )


class VoteAssignment(TimestampMixin, SQLModel, table=True):
    """A submission a reviewer has been asked to vote on."""

    __tablename__ = "vote_assignments"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id"), nullable=False, index=True
        )
    )
    submission_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("submissions.id"), nullable=False, index=True
        )
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "submission_id", name="uq_vote_assignments_user_submission"
        ),
    )


class Vote(TimestampMixin, SQLModel, table=True):
    """A reviewer's per-criterion scores for one submission."""

    __tablename__ = "votes"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id"), nullable=False, index=True
        )
    )
    submission_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("submissions.id"), nullable=False, index=True
        )
    )

    problem_fit_score: int = Field(sa_column=Column(Integer, nullable=False))
    clarity_score: int = Field(sa_column=Column(Integer, nullable=False))
    style_interpretation_score: int = Field(sa_column=Column(Integer, nullable=False))
    originality_score: int = Field(sa_column=Column(Integer, nullable=False))
    overall_quality_score: int = Field(sa_column=Column(Integer, nullable=False))

    __table_args__ = (
        # At most one vote per reviewer and submission, closes the
        # check-then-insert race between concurrent requests
        UniqueConstraint("user_id", "submission_id", name="uq_votes_user_submission"),
        *(
            CheckConstraint(
                f"{criterion} >= {MIN_VOTE_SCORE} AND {criterion} <= {MAX_VOTE_SCORE}",
                name=f"ck_votes_{criterion}_range",
            )
            for criterion in VOTE_CRITERIA
        ),
    )


class Score(TimestampMixin, SQLModel, table=True):
    """Smoothed leaderboard scores for one submission."""

    __tablename__ = "scores"

    id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    submission_id: int = Field(
        sa_column=Column(
            BigInteger,
            ForeignKey("submissions.id"),
            nullable=False,
            unique=True,
        )
    )

    problem_fit_score: int = Field(sa_column=Column(Integer, nullable=False))
    visual_clarity_score: int = Field(sa_column=Column(Integer, nullable=False))
    style_interpretation_score: int = Field(sa_column=Column(Integer, nullable=False))
    originality_score: int = Field(sa_column=Column(Integer, nullable=False))
    overall_quality_score: int = Field(sa_column=Column(Integer, nullable=False))
    final_score: int = Field(sa_column=Column(Integer, nullable=False))

    __table_args__ = (
        CheckConstraint("final_score >= 0", name="ck_scores_final_non_negative"),
        Index("ix_scores_final_score", "final_score"),
    )
