"""users, ad accounts and per-account billing tables

Revision ID: 20260301_initial_billing_schema
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_initial_billing_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=128)),
        sa.Column("last_name", sa.String(length=128)),
        sa.Column("company", sa.String(length=255)),
        sa.Column("current_plan_id", sa.String(length=64)),
        sa.Column("current_plan_name", sa.String(length=128)),
        sa.Column("current_billing_cycle", sa.String(length=16)),
        sa.Column(
            "subscription_status",
            sa.String(length=32),
            nullable=False,
            server_default="inactive",
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "stripe_customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "stripe_customer_id", sa.String(length=255), nullable=False, unique=True
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "ad_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("account_name", sa.String(length=255), nullable=False),
        sa.Column("account_id", sa.String(length=255), unique=True),
        sa.Column(
            "platform", sa.String(length=32), nullable=False, server_default="facebook"
        ),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default="active"
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_ad_accounts_user_id", "ad_accounts", ["user_id"])

    op.create_table(
        "ad_account_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ad_account_id", sa.String(length=255), nullable=False),
        sa.Column("ad_account_name", sa.String(length=255)),
        sa.Column("stripe_subscription_id", sa.String(length=255)),
        sa.Column("stripe_price_id", sa.String(length=255)),
        sa.Column("stripe_customer_id", sa.String(length=255)),
        sa.Column("plan_id", sa.String(length=64), nullable=False),
        sa.Column("billing_cycle", sa.String(length=16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "currency", sa.String(length=8), nullable=False, server_default="usd"
        ),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default="incomplete"
        ),
        sa.Column("current_period_start", sa.DateTime()),
        sa.Column("current_period_end", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id",
            "ad_account_id",
            name="uq_ad_account_subscriptions_user_account",
        ),
    )
    op.create_index(
        "ix_ad_account_subscriptions_user_id",
        "ad_account_subscriptions",
        ["user_id"],
    )
    op.create_index(
        "ix_ad_account_subscriptions_stripe_subscription_id",
        "ad_account_subscriptions",
        ["stripe_subscription_id"],
    )

    op.create_table(
        "per_account_billing_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("ad_account_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("ad_account_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_invoice_id", sa.String(length=255)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "currency", sa.String(length=8), nullable=False, server_default="usd"
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("billing_period_start", sa.DateTime()),
        sa.Column("billing_period_end", sa.DateTime()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_per_account_billing_history_subscription_id",
        "per_account_billing_history",
        ["subscription_id"],
    )
    op.create_index(
        "ix_per_account_billing_history_user_id",
        "per_account_billing_history",
        ["user_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_per_account_billing_history_user_id",
        table_name="per_account_billing_history",
    )
    op.drop_index(
        "ix_per_account_billing_history_subscription_id",
        table_name="per_account_billing_history",
    )
    op.drop_table("per_account_billing_history")
    op.drop_index(
        "ix_ad_account_subscriptions_stripe_subscription_id",
        table_name="ad_account_subscriptions",
    )
    op.drop_index(
        "ix_ad_account_subscriptions_user_id", table_name="ad_account_subscriptions"
    )
    op.drop_table("ad_account_subscriptions")
    op.drop_index("ix_ad_accounts_user_id", table_name="ad_accounts")
    op.drop_table("ad_accounts")
    op.drop_table("stripe_customers")
    op.drop_table("users")
