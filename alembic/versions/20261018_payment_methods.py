"""saved payment methods"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261018_payment_methods"
down_revision = "20261001_initial_schema"
branch_labels = None
depends_on = None

PAYMENT_METHOD_TYPES = ("card", "bank", "mobile_money", "eft")


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(*PAYMENT_METHOD_TYPES, name="paymentmethodtype").create(bind, checkfirst=True)

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type",
            postgresql.ENUM(*PAYMENT_METHOD_TYPES, name="paymentmethodtype", create_type=False),
            nullable=False,
        ),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("card_last4", sa.String(length=4), nullable=True),
        sa.Column("card_brand", sa.String(length=30), nullable=True),
        sa.Column("card_type", sa.String(length=20), nullable=True),
        sa.Column("expiry_month", sa.Integer(), nullable=True),
        sa.Column("expiry_year", sa.Integer(), nullable=True),
        sa.Column("bank_name", sa.String(length=100), nullable=True),
        sa.Column("account_type", sa.String(length=16), nullable=True),
        sa.Column("account_holder", sa.String(length=150), nullable=True),
        sa.Column("account_number", sa.String(length=32), nullable=True),
        sa.Column("account_last4", sa.String(length=4), nullable=True),
        sa.Column("branch_code", sa.String(length=16), nullable=True),
        sa.Column("mobile_provider", sa.String(length=50), nullable=True),
        sa.Column("mobile_number", sa.String(length=20), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint(
            "expiry_month IS NULL OR (expiry_month BETWEEN 1 AND 12)", name="ck_payment_method_expiry_month"
        ),
    )
    op.create_index("ix_payment_methods_user_id", "payment_methods", ["user_id"])
    op.create_index("ix_payment_methods_user_default", "payment_methods", ["user_id", "is_default"])


def downgrade() -> None:
    op.drop_table("payment_methods")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        postgresql.ENUM(*PAYMENT_METHOD_TYPES, name="paymentmethodtype").drop(bind, checkfirst=True)
