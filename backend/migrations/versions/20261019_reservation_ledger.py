"""Reservation lifecycle and stock ledger

Revision ID: 20261019_reservation_ledger
Revises:
Create Date: 2026-10-19

Creates:
1. products (catalog rows the reservation core reads and decrements)
2. settings (singleton reservation tunables)
3. reservations (customer holds with frozen pricing and a version counter)
4. inventory_movements (append-only stock ledger)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_reservation_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. PRODUCTS
    # ==========================================================================
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("retail_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wholesale_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_active_name", ["is_active", "name"], unique=False)

    # ==========================================================================
    # 2. SETTINGS
    # ==========================================================================
    op.create_table(
        "settings",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("temp_reservation_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("deposit_percentage", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("deposit_reservation_hours", sa.Integer(), nullable=False, server_default="48"),
        sa.Column("pending_verification_hours", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("exchange_rate", sa.Numeric(precision=12, scale=4), nullable=False, server_default="17.50"),
        sa.Column("updated_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint(
            "deposit_percentage >= 1 AND deposit_percentage <= 100",
            name="ck_settings_deposit_percentage_range",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # 3. RESERVATIONS
    # ==========================================================================
    op.create_table(
        "reservations",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("qr_code", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("total_price_cents", sa.Integer(), nullable=False),
        sa.Column("deposit_amount_cents", sa.Integer(), nullable=True),
        sa.Column("deposit_paid", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("payment_proof_url", sa.String(length=512), nullable=True),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("qr_code", name="uq_reservations_qr_code"),
    )
    with op.batch_alter_table("reservations", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_reservations_product_id"), ["product_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_reservations_status"), ["status"], unique=False)
        batch_op.create_index("ix_reservations_status_expires", ["status", "expires_at"], unique=False)
        batch_op.create_index("ix_reservations_user_created", ["user_id", "created_at"], unique=False)

    # ==========================================================================
    # 4. INVENTORY MOVEMENTS (stock ledger)
    # ==========================================================================
    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("reservation_id", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_inventory_movements_quantity_positive"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["reservation_id"], ["reservations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_inventory_movements_product_id"), ["product_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_inventory_movements_type"), ["type"], unique=False)
        batch_op.create_index(batch_op.f("ix_inventory_movements_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_inventory_movements_reservation_id"), ["reservation_id"], unique=False)
        batch_op.create_index("ix_inventory_movements_product_created", ["product_id", "created_at"], unique=False)


def downgrade():
    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.drop_index("ix_inventory_movements_product_created")
        batch_op.drop_index(batch_op.f("ix_inventory_movements_reservation_id"))
        batch_op.drop_index(batch_op.f("ix_inventory_movements_user_id"))
        batch_op.drop_index(batch_op.f("ix_inventory_movements_type"))
        batch_op.drop_index(batch_op.f("ix_inventory_movements_product_id"))
    op.drop_table("inventory_movements")

    with op.batch_alter_table("reservations", schema=None) as batch_op:
        batch_op.drop_index("ix_reservations_user_created")
        batch_op.drop_index("ix_reservations_status_expires")
        batch_op.drop_index(batch_op.f("ix_reservations_status"))
        batch_op.drop_index(batch_op.f("ix_reservations_product_id"))
    op.drop_table("reservations")

    op.drop_table("settings")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_active_name")
    op.drop_table("products")
