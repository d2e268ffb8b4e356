"""Accounts, sessions, usage counters, Stripe event ledger, pending purchases.

App startup runs Base.metadata.create_all before migrating, so each table is only
created here when it doesn't exist yet (fresh databases migrated offline / by CLI).

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _missing(table: str) -> bool:
    return table not in sa.inspect(op.get_bind()).get_table_names()


def upgrade() -> None:
    if _missing("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("email_lower", sa.String(), nullable=False),
            sa.Column("hashed_password", sa.String(), nullable=False),
            sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("verification_token_hash", sa.String(), nullable=True),
            sa.Column("verification_token_expires_at", sa.DateTime(), nullable=True),
            sa.Column("plan", sa.String(), nullable=False, server_default="free"),
            sa.Column("plan_status", sa.String(), nullable=False, server_default="active"),
            sa.Column("plan_expires_at", sa.DateTime(), nullable=True),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_email_lower", "users", ["email_lower"], unique=True)
        op.create_index("ix_users_verification_token_hash", "users", ["verification_token_hash"])
        op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"])
        op.create_index("ix_users_stripe_subscription_id", "users", ["stripe_subscription_id"])

    if _missing("sessions"):
        op.create_table(
            "sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("token_hash", sa.String(64), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_sessions_id", "sessions", ["id"])
        op.create_index("ix_sessions_token_hash", "sessions", ["token_hash"], unique=True)
        op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
        op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    if _missing("usage_counters"):
        op.create_table(
            "usage_counters",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(255), nullable=False),
            sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reset_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_usage_counters_key", "usage_counters", ["key"], unique=True)
        op.create_index("ix_usage_counters_reset_at", "usage_counters", ["reset_at"])

    if _missing("processed_stripe_events"):
        op.create_table(
            "processed_stripe_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("stripe_event_id", sa.String(255), nullable=False),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index(
            "ix_processed_stripe_events_stripe_event_id",
            "processed_stripe_events",
            ["stripe_event_id"],
            unique=True,
        )

    if _missing("pending_purchases"):
        op.create_table(
            "pending_purchases",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("email_lower", sa.String(), nullable=False),
            sa.Column("plan", sa.String(), nullable=False),
            sa.Column("plan_status", sa.String(), nullable=False),
            sa.Column("plan_expires_at", sa.DateTime(), nullable=True),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("claimed_at", sa.DateTime(), nullable=True),
            sa.Column(
                "claimed_by_user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
        )
        op.create_index("ix_pending_purchases_id", "pending_purchases", ["id"])
        op.create_index(
            "pending_purchase_claim_lookup",
            "pending_purchases",
            ["email_lower", "claimed_by_user_id", "created_at"],
        )
        op.create_index("ix_pending_purchases_stripe_customer_id", "pending_purchases", ["stripe_customer_id"])
        op.create_index("ix_pending_purchases_stripe_subscription_id", "pending_purchases", ["stripe_subscription_id"])


def downgrade() -> None:
    op.drop_table("pending_purchases")
    op.drop_table("processed_stripe_events")
    op.drop_table("usage_counters")
    op.drop_table("sessions")
    op.drop_table("users")
