"""initial cashback ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(18, 2)

TRANSACTION_TYPE = sa.Enum(
    "expense", "debt", "income", "transfer", "repayment", name="transactiontype"
)
CASHBACK_MODE = sa.Enum("real", "virtual", "voluntary", name="cashbackmode")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "credit_card", "bank", "cash", "savings", "other", name="accounttype"
            ),
            nullable=False,
        ),
        sa.Column("cashback_config", sa.JSON()),
        sa.Column("archived_at", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column(
            "status",
            sa.Enum("posted", "void", name="transactionstatus"),
            nullable=False,
            server_default="posted",
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("persisted_cycle_tag", sa.String(length=7)),
        sa.Column(
            "cashback_mode",
            sa.Enum(
                "none_back",
                "real_fixed",
                "real_percent",
                "voluntary",
                name="cashbackpreference",
            ),
            nullable=False,
            server_default="none_back",
        ),
        sa.Column("cashback_share_percent", sa.Numeric(9, 6)),
        sa.Column("cashback_share_fixed", MONEY),
        *_timestamps(),
    )
    op.create_index(
        "ix_transactions_account_cycle",
        "transactions",
        ["account_id", "persisted_cycle_tag"],
    )
    op.create_index(
        "ix_transactions_account_occurred",
        "transactions",
        ["account_id", "occurred_at"],
    )

    op.create_table(
        "cashback_cycles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("cycle_tag", sa.String(length=7), nullable=False),
        sa.Column("max_budget", MONEY),
        sa.Column("min_spend_target", MONEY),
        sa.Column("spent_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("real_awarded", MONEY, nullable=False, server_default="0"),
        sa.Column("virtual_profit", MONEY, nullable=False, server_default="0"),
        sa.Column("overflow_loss", MONEY, nullable=False, server_default="0"),
        sa.Column(
            "is_exhausted", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "met_min_spend", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "cycle_tag", name="uq_cycle_account_tag"),
        sa.CheckConstraint("spent_amount >= 0", name="ck_cycle_spent_positive"),
    )

    op.create_table(
        "cashback_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "cycle_id",
            sa.Integer(),
            sa.ForeignKey("cashback_cycles.id"),
            nullable=False,
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            nullable=False,
        ),
        sa.Column("mode", CASHBACK_MODE, nullable=False),
        sa.Column("amount", MONEY, nullable=False, server_default="0"),
        sa.Column(
            "counts_to_budget", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("metadata", sa.JSON()),
        sa.Column("note", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "account_id", "transaction_id", name="uq_entry_account_transaction"
        ),
    )
    op.create_index("ix_cashback_entries_cycle", "cashback_entries", ["cycle_id"])


def downgrade():
    op.drop_index("ix_cashback_entries_cycle", table_name="cashback_entries")
    op.drop_table("cashback_entries")
    op.drop_table("cashback_cycles")
    op.drop_index("ix_transactions_account_occurred", table_name="transactions")
    op.drop_index("ix_transactions_account_cycle", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("accounts")
