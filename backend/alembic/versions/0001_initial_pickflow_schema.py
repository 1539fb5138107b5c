"""Initial pickflow schema: batches, orders, pick lists, loads, audit.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Stock ─────────────────────────────────────────────────
    op.create_table(
        "inventory_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_number", sa.String(50), nullable=False, unique=True),
        sa.Column("product_key", sa.String(100), nullable=False),
        sa.Column("size_key", sa.String(50)),
        sa.Column("location_key", sa.String(100), nullable=False),
        sa.Column("initial_quantity", sa.Integer(), nullable=False),
        sa.Column("available_quantity", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.Date(), nullable=False),
        sa.Column("expires_at", sa.Date()),
        sa.Column("status", sa.String(30), server_default="active"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("available_quantity >= 0", name="ck_batch_available_non_negative"),
    )
    op.create_index("ix_inventory_batches_batch_number", "inventory_batches", ["batch_number"])
    op.create_index("ix_inventory_batches_product_key", "inventory_batches", ["product_key"])
    op.create_index("ix_inventory_batches_size_key", "inventory_batches", ["size_key"])
    op.create_index("ix_inventory_batches_location_key", "inventory_batches", ["location_key"])
    op.create_index("ix_inventory_batches_status", "inventory_batches", ["status"])

    # ── Orders ────────────────────────────────────────────────
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.String(50), nullable=False, unique=True),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("requested_delivery_date", sa.Date()),
        sa.Column("status", sa.String(30), server_default="confirmed"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_lines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_key", sa.String(100), nullable=False),
        sa.Column("size_key", sa.String(50)),
        sa.Column("location_key", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("quantity", sa.Integer(), nullable=False),
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"])

    # ── Picking ───────────────────────────────────────────────
    op.create_table(
        "pick_lists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False, unique=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(30), server_default="pending"),
        sa.Column("assigned_team", sa.String(100)),
        sa.Column("assigned_worker", sa.String(100)),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("started_by", sa.String(100)),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("completed_by", sa.String(100)),
        sa.Column("trolley_info", sa.JSON()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_pick_lists_order_id", "pick_lists", ["order_id"])
    op.create_index("ix_pick_lists_sequence", "pick_lists", ["sequence"])
    op.create_index("ix_pick_lists_status", "pick_lists", ["status"])
    op.create_index("ix_pick_lists_assigned_team", "pick_lists", ["assigned_team"])

    op.create_table(
        "pick_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("pick_list_id", sa.String(36), sa.ForeignKey("pick_lists.id"), nullable=False),
        sa.Column("order_line_id", sa.String(36), sa.ForeignKey("order_lines.id")),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_key", sa.String(100), nullable=False),
        sa.Column("size_key", sa.String(50)),
        sa.Column("location_key", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("target_qty", sa.Integer(), nullable=False),
        sa.Column("picked_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("short_reason", sa.String(255)),
        sa.Column("picked_at", sa.DateTime()),
        sa.Column("picked_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("picked_qty >= 0", name="ck_pick_item_picked_non_negative"),
        sa.CheckConstraint("picked_qty <= target_qty", name="ck_pick_item_not_over_target"),
    )
    op.create_index("ix_pick_items_pick_list_id", "pick_items", ["pick_list_id"])
    op.create_index("ix_pick_items_product_key", "pick_items", ["product_key"])
    op.create_index("ix_pick_items_location_key", "pick_items", ["location_key"])
    op.create_index("ix_pick_items_status", "pick_items", ["status"])

    op.create_table(
        "batch_picks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("pick_item_id", sa.String(36), sa.ForeignKey("pick_items.id"), nullable=False),
        sa.Column("batch_id", sa.String(36), sa.ForeignKey("inventory_batches.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("picked_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_batch_pick_quantity_positive"),
    )
    op.create_index("ix_batch_picks_pick_item_id", "batch_picks", ["pick_item_id"])
    op.create_index("ix_batch_picks_batch_id", "batch_picks", ["batch_id"])

    # ── Dispatch ──────────────────────────────────────────────
    op.create_table(
        "delivery_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("load_code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255)),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(30), server_default="planned"),
        sa.Column("carrier_name", sa.String(255)),
        sa.Column("vehicle_registration", sa.String(50)),
        sa.Column("vehicle_capacity", sa.Integer()),
        sa.Column("display_order", sa.Integer(), server_default="0"),
        sa.Column("dispatched_at", sa.DateTime()),
        sa.Column("dispatched_by", sa.String(100)),
        sa.Column("dispatch_override_reason", sa.Text()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_delivery_runs_load_code", "delivery_runs", ["load_code"])
    op.create_index("ix_delivery_runs_run_date", "delivery_runs", ["run_date"])
    op.create_index("ix_delivery_runs_status", "delivery_runs", ["status"])

    op.create_table(
        "load_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("delivery_run_id", sa.String(36), sa.ForeignKey("delivery_runs.id"), nullable=False),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("trolley_count", sa.Integer(), server_default="0"),
        sa.Column("status", sa.String(30), server_default="pending"),
        sa.Column("previous_order_status", sa.String(30)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("delivery_run_id", "order_id", name="uq_load_item_order"),
    )
    op.create_index("ix_load_items_delivery_run_id", "load_items", ["delivery_run_id"])
    op.create_index("ix_load_items_order_id", "load_items", ["order_id"])

    # ── Support ───────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_actor", "activity_logs", ["actor"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])

    op.create_table(
        "sequence_counters",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    for table in (
        "sequence_counters", "activity_logs", "load_items", "delivery_runs",
        "batch_picks", "pick_items", "pick_lists", "order_lines", "orders",
        "inventory_batches",
    ):
        op.drop_table(table)
