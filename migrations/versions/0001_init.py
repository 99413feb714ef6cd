"""init schema: verification codes, items, item updates, admin settings

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enable citext for case-insensitive email
    op.execute("CREATE EXTENSION IF NOT EXISTS citext")

    # verification_codes
    op.create_table(
        "verification_codes",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", pg.CITEXT(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column("action_data", pg.JSONB(), nullable=False),
        sa.Column("expires_at", pg.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "action_type in ('submission','update','deletion_request',"
            "'update_deletion_request','status_change_request','preference_change')",
            name="ck_verification_codes_verification_codes_action_type",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_verification_codes"),
    )
    op.create_index("ix_verification_codes_email", "verification_codes", ["email"])
    op.create_index("ix_verification_codes_expires_at", "verification_codes", ["expires_at"])

    # items
    op.create_table(
        "items",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("prayer_for", sa.Text(), nullable=True),
        sa.Column("requester", sa.Text(), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("email", pg.CITEXT(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'current'")),
        sa.Column("approval_status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_reminder_sent_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint("status in ('current','ongoing','answered','closed')", name="ck_items_items_status"),
        sa.CheckConstraint(
            "approval_status in ('pending','approved','denied')", name="ck_items_items_approval_status"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_items"),
    )
    op.create_index("ix_items_status_approval", "items", ["status", "approval_status"])

    # item_updates
    op.create_table(
        "item_updates",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("item_id", pg.UUID(as_uuid=True), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(
            ["item_id"], ["items.id"], name="fk_item_updates_item_id_items", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_item_updates"),
    )
    op.create_index("ix_item_updates_item_created", "item_updates", ["item_id", "created_at"])

    # admin_settings (single row)
    op.create_table(
        "admin_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("distribution_policy", sa.Text(), nullable=False, server_default=sa.text("'admin_only'")),
        sa.Column("notification_emails", pg.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("reminder_interval_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("verification_code_length", sa.Integer(), nullable=False, server_default=sa.text("6")),
        sa.Column("updated_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("id = 1", name="ck_admin_settings_admin_settings_singleton"),
        sa.CheckConstraint(
            "distribution_policy in ('admin_only','all_subscribers')",
            name="ck_admin_settings_admin_settings_distribution",
        ),
        sa.CheckConstraint(
            "verification_code_length between 4 and 10",
            name="ck_admin_settings_admin_settings_code_length",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_admin_settings"),
    )
    op.execute("INSERT INTO admin_settings (id) VALUES (1) ON CONFLICT (id) DO NOTHING")


def downgrade() -> None:
    op.drop_table("admin_settings")
    op.drop_index("ix_item_updates_item_created", table_name="item_updates")
    op.drop_table("item_updates")
    op.drop_index("ix_items_status_approval", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_verification_codes_expires_at", table_name="verification_codes")
    op.drop_index("ix_verification_codes_email", table_name="verification_codes")
    op.drop_table("verification_codes")
