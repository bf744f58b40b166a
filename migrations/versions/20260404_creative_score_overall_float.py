"""store creative overall score as float

Revision ID: 20260404_creative_score_overall_float
Revises: 20260312_add_creative_scores_and_sessions
Create Date: 2026-04-04 10:05:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260404_creative_score_overall_float"
down_revision = "20260312_add_creative_scores_and_sessions"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # batch mode recreates the table on SQLite, plain ALTER elsewhere
    with op.batch_alter_table("creative_scores") as batch_op:
        batch_op.alter_column(
            "score_overall",
            existing_type=sa.Integer(),
            type_=sa.Float(),
            existing_nullable=False,
        )


def downgrade() -> None:
    with op.batch_alter_table("creative_scores") as batch_op:
        batch_op.alter_column(
            "score_overall",
            existing_type=sa.Float(),
            type_=sa.Integer(),
            existing_nullable=False,
        )
