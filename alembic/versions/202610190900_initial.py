"""transactions and recurring rules

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


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("content", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("memo", sa.Text()),
        sa.Column("receipt_url", sa.String(length=500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )

    op.create_table(
        "recurring_rules",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("content", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("memo", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_rule_amount_positive"),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_rule_day_of_month_range"
        ),
    )
    op.create_index(
        "ix_recurring_rules_user_day", "recurring_rules", ["user_id", "day_of_month"]
    )


def downgrade():
    op.drop_index("ix_recurring_rules_user_day", table_name="recurring_rules")
    op.drop_table("recurring_rules")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
