"""Initial schema: users, events, bookings, digital products, orders and download logs.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Events table
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("venue_name", sa.String(255), nullable=True),
        sa.Column("venue_city", sa.String(100), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("available_spots", sa.Integer(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        # Last line of defence against overbooking: a lost update that pushes
        # the counter below zero fails the transaction instead of committing.
        sa.CheckConstraint(
            "available_spots >= 0 AND available_spots <= capacity",
            name="check_available_spots",
        ),
        sa.CheckConstraint("capacity > 0", name="check_capacity_positive"),
        sa.CheckConstraint("price >= 0", name="check_event_price_non_negative"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_event_date", "events", ["event_date"])
    op.create_index("ix_events_venue_city", "events", ["venue_city"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("attendees", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("attendees > 0", name="check_booking_attendees_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')",
            name="check_booking_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_event_id", "bookings", ["event_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    # One live booking per user per event; cancelled rows do not count.
    op.create_index(
        "uq_bookings_user_event_active",
        "bookings",
        ["user_id", "event_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    # Digital products table
    op.create_table(
        "digital_products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("product_type", sa.String(20), nullable=False, server_default="pdf"),
        sa.Column("file_url", sa.String(500), nullable=False),
        # Default comes from DEFAULT_DOWNLOAD_LIMIT at insert time
        sa.Column("download_limit", sa.Integer(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("download_limit > 0", name="check_download_limit_positive"),
    )
    op.create_index("ix_digital_products_id", "digital_products", ["id"])

    # Orders (written by checkout, read here for ownership checks)
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        *_timestamps(),
    )
    op.create_index("ix_orders_id", "orders", ["id"])
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("digital_product_id", sa.Integer(), sa.ForeignKey("digital_products.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )
    op.create_index("ix_order_items_id", "order_items", ["id"])
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_digital_product_id", "order_items", ["digital_product_id"])

    # Download logs: append-only, counted to enforce download limits
    op.create_table(
        "download_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("digital_product_id", sa.Integer(), sa.ForeignKey("digital_products.id"), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("downloaded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_download_logs_id", "download_logs", ["id"])
    op.create_index(
        "ix_download_logs_scope",
        "download_logs",
        ["user_id", "digital_product_id", "order_id"],
    )
    op.create_index("ix_download_logs_downloaded_at", "download_logs", ["downloaded_at"])


def downgrade() -> None:
    op.drop_table("download_logs")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("digital_products")
    op.drop_table("bookings")
    op.drop_table("events")
    op.drop_table("users")
