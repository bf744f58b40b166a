"""add creative_scores and facebook_sessions tables

Revision ID: 20260312_add_creative_scores_and_sessions
Revises: 20260301_initial_billing_schema
Create Date: 2026-03-12 14:20:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260312_add_creative_scores_and_sessions"
down_revision = "20260301_initial_billing_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "creative_scores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creative_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("ad_account_id", sa.String(length=255), nullable=False),
        sa.Column("image_hash", sa.String(length=255)),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("score_overall", sa.Integer(), nullable=False),
        sa.Column("scores_json", sa.JSON(), nullable=False),
        sa.Column("insights_json", sa.JSON(), nullable=False),
        sa.Column("compliance_flags", sa.JSON(), nullable=False),
        sa.Column("processing_time_ms", sa.Integer()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint(
            "score_overall >= 0 AND score_overall <= 100",
            name="ck_creative_scores_overall_range",
        ),
    )
    op.create_index(
        "ix_creative_scores_ad_account_id", "creative_scores", ["ad_account_id"]
    )
    op.create_index("ix_creative_scores_image_hash", "creative_scores", ["image_hash"])

    op.create_table(
        "facebook_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("ad_account_id", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("facebook_sessions")
    op.drop_index("ix_creative_scores_image_hash", table_name="creative_scores")
    op.drop_index("ix_creative_scores_ad_account_id", table_name="creative_scores")
    op.drop_table("creative_scores")
