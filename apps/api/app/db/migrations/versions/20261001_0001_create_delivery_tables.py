"""create delivery_companies, orders, delivery_events

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261001_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

delivery_event_source = sa.Enum(
    "DISPATCH", "WEBHOOK", "BATCH_ASSIGN", name="delivery_event_source"
)


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "delivery_companies",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "provider_family", sa.String(length=32), nullable=False, server_default="generic"
        ),
        sa.Column("api_configuration", _json(), nullable=False),
        sa.Column("credentials", _json(), nullable=False),
        sa.Column("field_mappings", _json(), nullable=False),
        sa.Column("status_mapping", _json(), nullable=False),
        sa.Column("area_mappings", _json(), nullable=False),
        sa.Column("custom_fields", _json(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_delivery_companies_code", "delivery_companies", ["code"], unique=True
    )
    op.create_index(
        "uq_delivery_companies_active_default",
        "delivery_companies",
        ["is_default"],
        unique=True,
        sqlite_where=sa.text("is_default = 1 AND is_active = 1"),
        postgresql_where=sa.text("is_default AND is_active"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("customer_info", _json(), nullable=False),
        sa.Column("shipping_address", _json(), nullable=False),
        sa.Column("items", _json(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "delivery_company_id",
            sa.Uuid(),
            sa.ForeignKey("delivery_companies.id"),
            nullable=True,
        ),
        sa.Column("delivery_status", sa.String(length=32), nullable=True),
        sa.Column("delivery_tracking_number", sa.String(length=128), nullable=True),
        sa.Column("tracking_number", sa.String(length=128), nullable=True),
        sa.Column("delivery_assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_fee", sa.Float(), nullable=True),
        sa.Column("delivery_response", _json(), nullable=True),
        sa.Column("delivery_notes", sa.Text(), nullable=True),
        sa.Column("delivery_estimated_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_actual_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_status_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_delivery_company_id", "orders", ["delivery_company_id"])
    op.create_index(
        "ix_orders_delivery_tracking_number", "orders", ["delivery_tracking_number"]
    )
    op.create_index("ix_orders_tracking_number", "orders", ["tracking_number"])

    op.create_table(
        "delivery_events",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "order_id",
            sa.Uuid(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "company_id",
            sa.Uuid(),
            sa.ForeignKey("delivery_companies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("source", delivery_event_source, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_delivery_events_order_id", "delivery_events", ["order_id"])


def downgrade() -> None:
    op.drop_index("ix_delivery_events_order_id", table_name="delivery_events")
    op.drop_table("delivery_events")

    op.drop_index("ix_orders_tracking_number", table_name="orders")
    op.drop_index("ix_orders_delivery_tracking_number", table_name="orders")
    op.drop_index("ix_orders_delivery_company_id", table_name="orders")
    op.drop_index("ix_orders_order_number", table_name="orders")
    op.drop_table("orders")

    op.drop_index("uq_delivery_companies_active_default", table_name="delivery_companies")
    op.drop_index("ix_delivery_companies_code", table_name="delivery_companies")
    op.drop_table("delivery_companies")

    delivery_event_source.drop(op.get_bind(), checkfirst=True)
