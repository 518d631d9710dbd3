"""point ledger schema: members, distributions, ledger, dedupe, stats, monitors, orders

Revision ID: 20261001_000001
Revises:
Create Date: 2026-10-01 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("telegram_bot_token", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "distributions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("network_area", sa.String(), nullable=False, server_default="global"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_distributions_code", "distributions", ["code"], unique=True)
    op.create_index("ix_distributions_owner_id", "distributions", ["owner_id"], unique=False)

    op.create_table(
        "point_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("memo", sa.String(), nullable=True),
        sa.Column("distribution_id", sa.String(), nullable=True),
        sa.Column("download_id", sa.String(), nullable=True),
        sa.Column("bucket_minute", sa.Integer(), nullable=True),
        sa.Column("platform", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_point_ledger_account_id", "point_ledger", ["account_id"], unique=False)
    op.create_index("ix_point_ledger_distribution_id", "point_ledger", ["distribution_id"], unique=False)
    op.create_index("ix_point_ledger_created_at", "point_ledger", ["created_at"], unique=False)
    op.create_index(
        "ix_point_ledger_account_created",
        "point_ledger",
        ["account_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "point_dedupe",
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("distribution_id", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("bucket_minute", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("account_id", "distribution_id", "platform", "bucket_minute"),
    )

    op.create_table(
        "distribution_download_stats",
        sa.Column("distribution_id", sa.String(), nullable=False),
        sa.Column("date", sa.String(), nullable=False),
        sa.Column("apk_downloads", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ipa_downloads", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("distribution_id", "date"),
    )

    op.create_table(
        "monitor_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=False),
        sa.Column("metric", sa.String(), nullable=True),
        sa.Column("distribution_code", sa.String(), nullable=True),
        sa.Column("target", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_monitor_records_user_id", "monitor_records", ["user_id"], unique=False)

    op.create_table(
        "recharge_orders",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("merchant_trade_no", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("ledger_id", sa.String(), nullable=True),
        sa.Column("trade_no", sa.String(), nullable=True),
        sa.Column("payment_type", sa.String(), nullable=True),
        sa.Column("rtn_code", sa.String(), nullable=True),
        sa.Column("rtn_msg", sa.String(), nullable=True),
        sa.Column("raw_notify", sa.JSON(), nullable=True),
        sa.Column("payment_info", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recharge_orders_merchant_trade_no", "recharge_orders", ["merchant_trade_no"], unique=True)
    op.create_index("ix_recharge_orders_account_id", "recharge_orders", ["account_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_recharge_orders_account_id", table_name="recharge_orders")
    op.drop_index("ix_recharge_orders_merchant_trade_no", table_name="recharge_orders")
    op.drop_table("recharge_orders")

    op.drop_index("ix_monitor_records_user_id", table_name="monitor_records")
    op.drop_table("monitor_records")

    op.drop_table("distribution_download_stats")
    op.drop_table("point_dedupe")

    op.drop_index("ix_point_ledger_account_created", table_name="point_ledger")
    op.drop_index("ix_point_ledger_created_at", table_name="point_ledger")
    op.drop_index("ix_point_ledger_distribution_id", table_name="point_ledger")
    op.drop_index("ix_point_ledger_account_id", table_name="point_ledger")
    op.drop_table("point_ledger")

    op.drop_index("ix_distributions_owner_id", table_name="distributions")
    op.drop_index("ix_distributions_code", table_name="distributions")
    op.drop_table("distributions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
