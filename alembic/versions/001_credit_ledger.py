"""Create tenants, users and the credit ledger tables.

Revision ID: 001_credit_ledger
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_credit_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=12), nullable=False, server_default="user"),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"], unique=False)

    op.create_table(
        "credit_accounts",
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ledger_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_nonneg"),
        sa.CheckConstraint("total_added >= 0", name="ck_credit_accounts_added_nonneg"),
        sa.CheckConstraint("total_used >= 0", name="ck_credit_accounts_used_nonneg"),
        sa.CheckConstraint(
            "balance = total_added - total_used",
            name="ck_credit_accounts_balance_matches_totals",
        ),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=6), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("feature", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("payment_ref", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_credit_transactions_amount_pos"),
        sa.CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after_nonneg"),
        sa.UniqueConstraint("tenant_id", "seq", name="uq_credit_transactions_tenant_seq"),
        sa.UniqueConstraint("tenant_id", "payment_ref", name="uq_credit_transactions_tenant_payment_ref"),
    )
    op.create_index("ix_credit_transactions_tenant_id", "credit_transactions", ["tenant_id"], unique=False)
    op.create_index("ix_credit_transactions_order_id", "credit_transactions", ["order_id"], unique=False)
    op.create_index(
        "ix_credit_transactions_tenant_created",
        "credit_transactions",
        ["tenant_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "tenant_credit_costs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("feature", sa.String(), nullable=False),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("cost >= 1", name="ck_tenant_credit_costs_cost_min"),
        sa.UniqueConstraint("tenant_id", "feature", name="uq_tenant_credit_costs_tenant_feature"),
    )
    op.create_index("ix_tenant_credit_costs_id", "tenant_credit_costs", ["id"], unique=False)
    op.create_index("ix_tenant_credit_costs_tenant_id", "tenant_credit_costs", ["tenant_id"], unique=False)

    op.create_table(
        "credit_deduction_failures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("feature", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=7), nullable=False, server_default="pending"),
        sa.Column("resolution_transaction_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_credit_deduction_failures_id", "credit_deduction_failures", ["id"], unique=False)
    op.create_index(
        "ix_credit_deduction_failures_tenant_id", "credit_deduction_failures", ["tenant_id"], unique=False
    )
    op.create_index(
        "ix_credit_deduction_failures_status", "credit_deduction_failures", ["status"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_credit_deduction_failures_status", table_name="credit_deduction_failures")
    op.drop_index("ix_credit_deduction_failures_tenant_id", table_name="credit_deduction_failures")
    op.drop_index("ix_credit_deduction_failures_id", table_name="credit_deduction_failures")
    op.drop_table("credit_deduction_failures")
    op.drop_index("ix_tenant_credit_costs_tenant_id", table_name="tenant_credit_costs")
    op.drop_index("ix_tenant_credit_costs_id", table_name="tenant_credit_costs")
    op.drop_table("tenant_credit_costs")
    op.drop_index("ix_credit_transactions_tenant_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_order_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_tenant_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_accounts")
    op.drop_index("ix_users_tenant_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("tenants")
