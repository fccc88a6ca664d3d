"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column(
            "role", sa.Enum("admin", "member", name="userrole"), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum("bank_account", "credit_card", name="accounttype"),
            nullable=False,
        ),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column("holder_name", sa.String(length=120)),
        sa.Column("last4_digits", sa.String(length=4)),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("unica", "mensal", "intervalo", name="incometype"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "date"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "compras_internet",
                "mercado",
                "assinaturas",
                "dividas",
                "contas_casa",
                "medico_saude",
                "entretenimento",
                "outros",
                name="expensecategory",
            ),
            nullable=False,
        ),
        sa.Column(
            "type", sa.Enum("recorrente", "pontual", name="expensetype"), nullable=False
        ),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "is_installment", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("purchase_id", sa.String(length=32)),
        sa.Column("current_installment", sa.Integer()),
        sa.Column("total_installments", sa.Integer()),
        sa.Column("total_amount", MONEY),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index(
        "ix_expenses_user_payment_date", "expenses", ["user_id", "payment_date"]
    )
    op.create_index("ix_expenses_user_purchase", "expenses", ["user_id", "purchase_id"])

    op.create_table(
        "savings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("source_description", sa.String(length=200), nullable=False),
        sa.Column(
            "source_income_id",
            sa.Integer(),
            sa.ForeignKey("incomes.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_savings_user_date", "savings", ["user_id", "date"])


def downgrade():
    op.drop_index("ix_savings_user_date", table_name="savings")
    op.drop_table("savings")
    op.drop_index("ix_expenses_user_purchase", table_name="expenses")
    op.drop_index("ix_expenses_user_payment_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_table("incomes")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
