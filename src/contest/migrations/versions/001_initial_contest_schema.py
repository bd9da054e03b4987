"""Initial contest database schema

Revision ID: 001
Revises:
Create Date: 2026-01-24 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

VOTE_CRITERIA = (
    "problem_fit_score",
    "clarity_score",
    "style_interpretation_score",
    "originality_score",
    "overall_quality_score",
)


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    # Create configs table (singleton row)
    op.create_table(
        "configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("submission_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submission_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voting_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voting_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "show_leaderboard", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("assigned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_scores", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("id = 1", name="ck_configs_singleton"),
    )
    op.create_index("ix_configs_created_at", "configs", ["created_at"])

    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("pid", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=256), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("otp", sa.String(length=16), nullable=True),
        sa.Column("otp_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_pid", "users", ["pid"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    # Create admins table
    op.create_table(
        "admins",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_admins_created_at", "admins", ["created_at"])

    # Create submissions table
    op.create_table(
        "submissions",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("figma_link", sa.String(length=512), nullable=False),
        sa.Column("design_image", sa.String(length=512), nullable=False),
        sa.Column("target_user_and_goal", sa.Text(), nullable=False),
        sa.Column("layout_explanation", sa.Text(), nullable=False),
        sa.Column("style_interpretation", sa.Text(), nullable=False),
        sa.Column("key_trade_off", sa.Text(), nullable=False),
        sa.Column("originality_confirmed", sa.Boolean(), nullable=False),
        sa.Column("template_compliance_confirmed", sa.Boolean(), nullable=False),
        sa.Column("future_improvements", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_submissions_user"),
    )
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_created_at", "submissions", ["created_at"])

    # Create vote_assignments table
    op.create_table(
        "vote_assignments",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("submission_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "submission_id", name="uq_vote_assignments_user_submission"
        ),
    )
    op.create_index("ix_vote_assignments_user_id", "vote_assignments", ["user_id"])
    op.create_index(
        "ix_vote_assignments_submission_id", "vote_assignments", ["submission_id"]
    )
    op.create_index(
        "ix_vote_assignments_created_at", "vote_assignments", ["created_at"]
    )

    # Create votes table
    op.create_table(
        "votes",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("submission_id", sa.BigInteger(), nullable=False),
        *(sa.Column(name, sa.Integer(), nullable=False) for name in VOTE_CRITERIA),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "submission_id", name="uq_votes_user_submission"
        ),
        *(
            sa.CheckConstraint(
                f"{name} >= 0 AND {name} <= 5", name=f"ck_votes_{name}_range"
            )
            for name in VOTE_CRITERIA
        ),
    )
    op.create_index("ix_votes_user_id", "votes", ["user_id"])
    op.create_index("ix_votes_submission_id", "votes", ["submission_id"])
    op.create_index("ix_votes_created_at", "votes", ["created_at"])

    # Create scores table
    op.create_table(
        "scores",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("submission_id", sa.BigInteger(), nullable=False),
        sa.Column("problem_fit_score", sa.Integer(), nullable=False),
        sa.Column("visual_clarity_score", sa.Integer(), nullable=False),
        sa.Column("style_interpretation_score", sa.Integer(), nullable=False),
        sa.Column("originality_score", sa.Integer(), nullable=False),
        sa.Column("overall_quality_score", sa.Integer(), nullable=False),
        sa.Column("final_score", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("submission_id"),
        sa.CheckConstraint("final_score >= 0", name="ck_scores_final_non_negative"),
    )
    op.create_index("ix_scores_final_score", "scores", ["final_score"])
    op.create_index("ix_scores_created_at", "scores", ["created_at"])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("scores")
    op.drop_table("votes")
    op.drop_table("vote_assignments")
    op.drop_table("submissions")
    op.drop_table("admins")
    op.drop_table("users")
    op.drop_table("configs")
