"""initial orderflow schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("external_order_id", sa.String(64), nullable=True, unique=True),
        sa.Column("external_order_number", sa.String(64), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(64), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("courier", sa.String(64), nullable=True),
        sa.Column("tracking_id", sa.String(128), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("pushed_status_tag", sa.String(128), nullable=True),
        _ts("booked_at", True),
        _ts("dispatched_at", True),
        _ts("delivered_at", True),
        _ts("returned_at", True),
        _ts("cancelled_at", True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_tracking_id", "orders", ["tracking_id"])

    op.create_table(
        "couriers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("booking_endpoint", sa.String(512), nullable=True),
        sa.Column("label_endpoint", sa.String(512), nullable=True),
        sa.Column("auth_type", sa.String(32), nullable=True),
        sa.Column("auth_config", sa.JSON(), nullable=True),
        sa.Column("api_key", sa.String(512), nullable=True),
        sa.Column("pickup_address_code", sa.String(64), nullable=True),
        sa.Column("label_format", sa.String(16), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
    )

    op.create_table(
        "dispatches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("courier", sa.String(64), nullable=False),
        sa.Column("tracking_id", sa.String(128), nullable=True),
        sa.Column("booking_response", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="dispatched"),
        sa.Column("dispatched_by", sa.String(64), nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "returns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="in_transit"),
        sa.Column("worth", sa.Numeric(12, 2), nullable=True),
        sa.Column("received_by", sa.String(64), nullable=True),
        _ts("received_at", True),
        sa.Column("claim_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("claim_status", sa.String(32), nullable=True),
        sa.Column("claim_reference", sa.String(128), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "courier_booking_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("courier_id", sa.Integer(), sa.ForeignKey("couriers.id"), nullable=True),
        sa.Column("attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("request_payload", sa.JSON(), nullable=True),
        sa.Column("response_payload", sa.JSON(), nullable=True),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("tracking_id", sa.String(128), nullable=True),
        sa.Column("label_url", sa.String(1024), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        _ts("created_at"),
    )
    op.create_index(
        "ix_booking_attempts_order", "courier_booking_attempts", ["order_id", "created_at"]
    )

    op.create_table(
        "courier_booking_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("courier_id", sa.Integer(), sa.ForeignKey("couriers.id"), nullable=False),
        sa.Column("booking_request", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="5"),
        _ts("next_retry_at"),
        sa.Column("last_error_code", sa.String(64), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_booking_queue_due", "courier_booking_queue", ["status", "next_retry_at"])

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("action", sa.String(32), nullable=False, server_default="update_tags"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("processed_at", True),
    )
    op.create_index("ix_sync_queue_status_created", "sync_queue", ["status", "created_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("ref", sa.String(128), nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
        _ts("created_at"),
    )
    op.create_index(
        "ix_audit_events_cat_ref_time", "audit_events", ["category", "ref", "created_at"]
    )
    op.create_index("ix_audit_events_trace_id", "audit_events", ["trace_id"])

    op.create_table(
        "scan_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("entry", sa.String(256), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("order_number", sa.String(64), nullable=True),
        sa.Column("customer", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("courier", sa.String(64), nullable=True),
        sa.Column("tracking_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("match_type", sa.String(32), nullable=True),
        sa.Column("processing_ms", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_scan_records_kind_time", "scan_records", ["kind", "created_at"])


def downgrade() -> None:
    for name in (
        "scan_records",
        "audit_events",
        "sync_queue",
        "courier_booking_queue",
        "courier_booking_attempts",
        "returns",
        "dispatches",
        "couriers",
        "orders",
    ):
        op.drop_table(name)
