"""usage ledger

Revision ID: 3f9b2c7d1e04
Revises:
Create Date: 2026-10-19 09:12:44.508113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9b2c7d1e04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- subscribers ---
    op.create_table(
        "subscribers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_metered_item_id", sa.String(), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=False, server_default="inactive"),
        sa.Column("billing_interval", sa.String(), nullable=False, server_default="month"),
        sa.Column("interval_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("interval_count >= 1", name="ck_subscribers_interval_count_positive"),
    )
    op.create_index("ix_subscribers_subscription_status", "subscribers", ["subscription_status"])

    # --- usage_events ---
    op.create_table(
        "usage_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("subscriber_id", sa.Uuid(), sa.ForeignKey("subscribers.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("billed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "(billed AND billed_at IS NOT NULL) OR (NOT billed AND billed_at IS NULL)",
            name="ck_usage_events_billed_at_matches_billed",
        ),
    )
    op.create_index(
        "ix_usage_events_subscriber_unbilled",
        "usage_events",
        ["subscriber_id", "billed", "occurred_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_usage_events_subscriber_unbilled", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_subscribers_subscription_status", table_name="subscribers")
    op.drop_table("subscribers")
