"""Add cycle winners and PayPal payout batch tables

Revision ID: 20261019_payout_batches
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_payout_batches"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(120), nullable=True),
        sa.Column("paypal_email", sa.String(255), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "cycle_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("payout_phase_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payout_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "cycle_winner_selections",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cycle_setting_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(16), nullable=True),
        sa.Column("payout_calculated", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payout_override", sa.Integer(), nullable=True),
        sa.Column("payout_final", sa.Integer(), nullable=True),
        sa.Column("payout_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("paypal_email_snapshot", sa.String(255), nullable=True),
        sa.Column("notification_displayed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("selected_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["cycle_setting_id"], ["cycle_settings.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cycle_setting_id", "user_id", name="uq_winner_cycle_user"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("cycle_winner_selections", schema=None) as batch_op:
        batch_op.create_index("ix_cycle_winner_selections_cycle_setting_id", ["cycle_setting_id"], unique=False)
        batch_op.create_index("ix_cycle_winner_selections_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_cycle_winner_selections_payout_status", ["payout_status"], unique=False)
        batch_op.create_index("ix_winner_cycle_status", ["cycle_setting_id", "payout_status"], unique=False)

    op.create_table(
        "payout_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cycle_id", sa.Integer(), nullable=False),
        sa.Column("sender_batch_id", sa.String(128), nullable=False),
        sa.Column("request_checksum", sa.String(64), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(24), nullable=False, server_default="draft"),
        sa.Column("paypal_batch_id", sa.String(64), nullable=True),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_recipients", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("successful_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pending_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unclaimed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("admin_id", sa.Integer(), nullable=False),
        sa.Column("cancelled_by_admin_id", sa.Integer(), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycle_settings.id"]),
        sa.ForeignKeyConstraint(["admin_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["cancelled_by_admin_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sender_batch_id", name="uq_payout_batches_sender_batch_id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payout_batches", schema=None) as batch_op:
        batch_op.create_index("ix_payout_batches_cycle_id", ["cycle_id"], unique=False)
        batch_op.create_index("ix_payout_batches_status", ["status"], unique=False)
        batch_op.create_index("ix_payout_batches_paypal_batch_id", ["paypal_batch_id"], unique=False)
        batch_op.create_index("ix_payout_batches_cycle_checksum", ["cycle_id", "request_checksum"], unique=False)
        batch_op.create_index("ix_payout_batches_cycle_status", ["cycle_id", "status"], unique=False)

    op.create_table(
        "payout_batch_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("cycle_winner_selection_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("paypal_email", sa.String(255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("paypal_item_id", sa.String(64), nullable=True),
        sa.Column("transaction_status", sa.String(32), nullable=True),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["batch_id"], ["payout_batches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_id", "cycle_winner_selection_id", name="uq_payout_items_batch_winner"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payout_batch_items", schema=None) as batch_op:
        batch_op.create_index("ix_payout_batch_items_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_payout_batch_items_cycle_winner_selection_id", ["cycle_winner_selection_id"], unique=False)
        batch_op.create_index("ix_payout_batch_items_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_payout_batch_items_status", ["status"], unique=False)
        batch_op.create_index("ix_payout_batch_items_paypal_item_id", ["paypal_item_id"], unique=False)
        batch_op.create_index("ix_payout_items_winner_status", ["cycle_winner_selection_id", "status"], unique=False)

    op.create_table(
        "user_reward_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_item_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("cycle_id", sa.Integer(), nullable=False),
        sa.Column("cycle_winner_selection_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("paypal_item_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["batch_item_id"], ["payout_batch_items.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["cycle_id"], ["cycle_settings.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_item_id", name="uq_user_reward_records_batch_item"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("user_reward_records", schema=None) as batch_op:
        batch_op.create_index("ix_user_reward_records_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_user_reward_records_cycle_id", ["cycle_id"], unique=False)
        batch_op.create_index("ix_user_reward_records_user_cycle", ["user_id", "cycle_id"], unique=False)


def downgrade():
    op.drop_table("user_reward_records")
    op.drop_table("payout_batch_items")
    op.drop_table("payout_batches")
    op.drop_table("cycle_winner_selections")
    op.drop_table("cycle_settings")
    op.drop_table("users")
