"""initial gigpay schema"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "gigstatus": ("open", "reviewing", "in-progress", "funded", "completed", "cancelled"),
    "applicationstatus": ("pending", "accepted", "rejected", "withdrawn", "funded", "completed"),
    "ratestatus": ("proposed", "countered", "agreed"),
    "rateparty": ("worker", "employer"),
    "applicationpaymentstatus": ("unpaid", "in_escrow", "paid"),
    "paymentprovider": ("paystack", "tradesafe", "manual"),
    "paymentstatus": ("processing", "completed", "failed", "refunded"),
    "paymentescrowstatus": ("pending", "funded", "released", "refunded"),
    "disputestatus": ("none", "raised", "investigating", "resolved"),
    "paymentintentstatus": ("created", "processing", "succeeded", "failed", "expired"),
    "escrowstatus": ("active", "released", "cancelled", "disputed"),
    "withdrawalstatus": ("pending", "processing", "completed", "failed"),
    "historytype": ("earnings", "payments", "refunds", "fees"),
    "historystatus": ("pending", "completed", "failed"),
    "apiscope": ("user", "support", "admin"),
}


def _enum(name: str) -> sa.Enum:
    # types are created once up front; several tables share them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=nullable)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("completed_gigs", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "fee_configs",
        *_base_columns(),
        sa.Column("platform_commission_percent", sa.Numeric(5, 2), nullable=False),
        _money("minimum_gig_amount"),
        _money("maximum_gig_amount"),
        sa.Column("escrow_auto_release_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("updated_by", sa.String(length=100), nullable=True),
    )
    op.create_index("ix_fee_configs_is_active", "fee_configs", ["is_active"])

    op.create_table(
        "audit_logs",
        *_base_columns(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_action_at", "audit_logs", ["action", "at"])

    op.create_table(
        "psp_webhook_events",
        *_base_columns(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=100), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("psp_ref", sa.String(length=128), nullable=True),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
    )
    op.create_index("ix_psp_webhook_events_received", "psp_webhook_events", ["received_at"])
    op.create_index("ix_psp_webhook_events_kind", "psp_webhook_events", ["kind"])

    op.create_table(
        "api_keys",
        *_base_columns(),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", _enum("apiscope"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "wallets",
        *_base_columns(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        _money("wallet_balance"),
        _money("pending_balance"),
        _money("total_earnings"),
        _money("total_withdrawn"),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_wallet_balance_non_negative"),
        sa.CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
        sa.CheckConstraint("total_earnings >= 0", name="ck_wallet_earnings_non_negative"),
        sa.CheckConstraint("total_withdrawn >= 0", name="ck_wallet_withdrawn_non_negative"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"])

    op.create_table(
        "gigs",
        *_base_columns(),
        sa.Column("employer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _money("budget"),
        sa.Column("status", _enum("gigstatus"), nullable=False),
        sa.Column("max_applicants", sa.Integer(), nullable=True),
        sa.Column("assigned_worker_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        _money("paid_amount", nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("budget > 0", name="ck_gig_budget_positive"),
    )
    op.create_index("ix_gigs_status", "gigs", ["status"])
    op.create_index("ix_gigs_employer_id", "gigs", ["employer_id"])

    op.create_table(
        "gig_applications",
        *_base_columns(),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=False),
        sa.Column("applicant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", _enum("applicationstatus"), nullable=False),
        _money("proposed_rate"),
        _money("agreed_rate", nullable=True),
        sa.Column("rate_status", _enum("ratestatus"), nullable=False),
        sa.Column("last_rate_update_by", _enum("rateparty"), nullable=True),
        _money("last_rate_update_amount", nullable=True),
        sa.Column("last_rate_update_note", sa.String(length=500), nullable=True),
        sa.Column("last_rate_update_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_status", _enum("applicationpaymentstatus"), nullable=False),
        sa.Column("completion_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_requested_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completion_auto_release_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_dispute_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("proposed_rate > 0", name="ck_application_proposed_rate_positive"),
    )
    op.create_index("ix_gig_applications_gig_id", "gig_applications", ["gig_id"])
    op.create_index("ix_gig_applications_applicant_id", "gig_applications", ["applicant_id"])
    op.create_index("ix_gig_applications_gig_status", "gig_applications", ["gig_id", "status"])
    op.create_index(
        "ix_gig_applications_auto_release", "gig_applications", ["status", "completion_auto_release_at"]
    )

    op.create_table(
        "payments",
        *_base_columns(),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=False),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("gig_applications.id"), nullable=False),
        sa.Column("employer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _money("amount"),
        _money("gross_amount"),
        _money("fees"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("provider_txn_id", sa.String(length=128), nullable=False, unique=True),
        sa.Column("status", _enum("paymentstatus"), nullable=False),
        sa.Column("escrow_status", _enum("paymentescrowstatus"), nullable=False),
        sa.Column("dispute_status", _enum("disputestatus"), nullable=False),
        sa.Column("verified_via", sa.String(length=32), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
    )
    op.create_index("ix_payments_created_at", "payments", ["created_at"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_gig_id", "payments", ["gig_id"])
    op.create_index("ix_payments_employer_id", "payments", ["employer_id"])
    op.create_index("ix_payments_worker_id", "payments", ["worker_id"])

    op.create_table(
        "payment_intents",
        *_base_columns(),
        sa.Column("reference", sa.String(length=64), nullable=False, unique=True),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=False),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("gig_applications.id"), nullable=False),
        sa.Column("employer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("status", _enum("paymentintentstatus"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("checkout_url", sa.String(length=500), nullable=True),
        sa.Column("provider_txn_id", sa.String(length=128), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_payment_intent_positive_amount"),
    )
    op.create_index("ix_payment_intents_status_expires", "payment_intents", ["status", "expires_at"])
    op.create_index("ix_payment_intents_gig_id", "payment_intents", ["gig_id"])

    op.create_table(
        "escrow_accounts",
        *_base_columns(),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=False, unique=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("employer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _money("total_amount"),
        _money("released_amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("status", _enum("escrowstatus"), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_amount > 0", name="ck_escrow_total_positive"),
        sa.CheckConstraint("released_amount >= 0", name="ck_escrow_released_non_negative"),
        sa.CheckConstraint("released_amount <= total_amount", name="ck_escrow_released_within_total"),
    )
    op.create_index("ix_escrow_accounts_status", "escrow_accounts", ["status"])
    op.create_index("ix_escrow_accounts_payment_id", "escrow_accounts", ["payment_id"])
    op.create_index("ix_escrow_accounts_worker_id", "escrow_accounts", ["worker_id"])

    op.create_table(
        "payment_disputes",
        *_base_columns(),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=False),
        sa.Column("raised_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("raised_against", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _enum("disputestatus"), nullable=False),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payment_disputes_payment_id", "payment_disputes", ["payment_id"])

    op.create_table(
        "withdrawal_requests",
        *_base_columns(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("status", _enum("withdrawalstatus"), nullable=False),
        sa.Column("bank_name", sa.String(length=100), nullable=False),
        sa.Column("account_holder", sa.String(length=150), nullable=False),
        sa.Column("account_number", sa.String(length=32), nullable=False),
        sa.Column("branch_code", sa.String(length=16), nullable=False),
        sa.Column("account_type", sa.String(length=16), nullable=False, server_default="savings"),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.String(length=100), nullable=True),
        sa.Column("rejected_by", sa.String(length=100), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_withdrawal_positive_amount"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_withdrawal_user_idempotency_key"),
    )
    op.create_index("ix_withdrawal_requests_user_created", "withdrawal_requests", ["user_id", "created_at"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])

    op.create_table(
        "payment_history",
        *_base_columns(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", _enum("historytype"), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("status", _enum("historystatus"), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("gig_id", sa.Integer(), sa.ForeignKey("gigs.id"), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("withdrawal_id", sa.Integer(), sa.ForeignKey("withdrawal_requests.id"), nullable=True),
    )
    op.create_index("ix_payment_history_user_created", "payment_history", ["user_id", "created_at"])
    op.create_index("ix_payment_history_gig_id", "payment_history", ["gig_id"])
    op.create_index("ix_payment_history_payment_id", "payment_history", ["payment_id"])


def downgrade() -> None:
    for table in (
        "payment_history",
        "withdrawal_requests",
        "payment_disputes",
        "escrow_accounts",
        "payment_intents",
        "payments",
        "gig_applications",
        "gigs",
        "wallets",
        "api_keys",
        "psp_webhook_events",
        "audit_logs",
        "fee_configs",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
