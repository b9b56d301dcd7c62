"""Create reconciliation tables.

Revision ID: 0001_reconciliation_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_reconciliation_tables"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = {
    "partner_kind_enum": ("client", "supplier", "provider", "employee", "state", "bank"),
    "invoice_direction_enum": ("sale", "purchase"),
    "reconciliation_result_status_enum": ("matched", "uncertain", "unmatched", "partial"),
}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(
            f"""
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({labels});
                END IF;
            END$$;
            """
        )
    partner_kind_enum = postgresql.ENUM(*ENUMS["partner_kind_enum"], name="partner_kind_enum", create_type=False)
    invoice_direction_enum = postgresql.ENUM(
        *ENUMS["invoice_direction_enum"], name="invoice_direction_enum", create_type=False
    )
    result_status_enum = postgresql.ENUM(
        *ENUMS["reconciliation_result_status_enum"],
        name="reconciliation_result_status_enum",
        create_type=False,
    )

    op.create_table(
        "partners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("kind", partner_kind_enum, nullable=False),
        sa.Column("keywords", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "bank_statement_lines",
        sa.Column("numero_ligne", sa.String(length=64), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("debit", sa.Numeric(18, 2), nullable=False),
        sa.Column("credit", sa.Numeric(18, 2), nullable=False),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("partner_name", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"], ondelete="SET NULL"),
        sa.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_bank_statement_lines_non_negative"),
        sa.CheckConstraint("NOT (debit > 0 AND credit > 0)", name="ck_bank_statement_lines_one_side"),
    )
    op.create_index("ix_bank_statement_lines_date", "bank_statement_lines", ["date"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("number", sa.String(length=64), nullable=False),
        sa.Column("direction", invoice_direction_enum, nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("partner_name", sa.String(length=255), nullable=True),
        sa.Column("total_ht", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_tva", sa.Numeric(18, 2), nullable=False),
        sa.Column("total_ttc", sa.Numeric(18, 2), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_invoices_issue_date", "invoices", ["issue_date"])

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("monthly_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("vat_label", sa.String(length=64), nullable=True),
        sa.Column("keywords", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "charge_declarations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("organism", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("keywords", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "charge_payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("declaration_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["declaration_id"], ["charge_declarations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_charge_payments_declaration_id", "charge_payments", ["declaration_id"])
    op.create_index("ix_charge_payments_payment_date", "charge_payments", ["payment_date"])

    op.create_table(
        "reconciliation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("condition", postgresql.JSONB(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "reconciliation_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("numero_ligne", sa.String(length=64), nullable=False),
        sa.Column("status", result_status_enum, nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("documents", postgresql.JSONB(), nullable=False),
        sa.Column("matched_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("residual_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("manual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rule_ids", postgresql.JSONB(), nullable=False),
        sa.Column("inverse_of", sa.String(length=64), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("superseded_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["numero_ligne"], ["bank_statement_lines.numero_ligne"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["superseded_by_id"], ["reconciliation_results.id"]),
    )
    op.create_index("ix_reconciliation_results_numero_ligne", "reconciliation_results", ["numero_ligne"])

    op.create_table(
        "inverse_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("source_line", sa.String(length=64), nullable=False),
        sa.Column("target_line", sa.String(length=64), nullable=False),
        sa.Column("solde", sa.Numeric(18, 2), nullable=False),
        sa.Column("balanced", sa.Boolean(), nullable=False),
        sa.Column("manual", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["source_line"], ["bank_statement_lines.numero_ligne"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_line"], ["bank_statement_lines.numero_ligne"], ondelete="CASCADE"),
        sa.UniqueConstraint("source_line", "target_line", name="uq_inverse_links_pair"),
    )
    op.create_index("ix_inverse_links_source_line", "inverse_links", ["source_line"])
    op.create_index("ix_inverse_links_target_line", "inverse_links", ["target_line"])


def downgrade() -> None:
    op.drop_index("ix_inverse_links_target_line", table_name="inverse_links")
    op.drop_index("ix_inverse_links_source_line", table_name="inverse_links")
    op.drop_table("inverse_links")
    op.drop_index("ix_reconciliation_results_numero_ligne", table_name="reconciliation_results")
    op.drop_table("reconciliation_results")
    op.drop_table("reconciliation_rules")
    op.drop_index("ix_charge_payments_payment_date", table_name="charge_payments")
    op.drop_index("ix_charge_payments_declaration_id", table_name="charge_payments")
    op.drop_table("charge_payments")
    op.drop_table("charge_declarations")
    op.drop_table("subscriptions")
    op.drop_index("ix_invoices_issue_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_bank_statement_lines_date", table_name="bank_statement_lines")
    op.drop_table("bank_statement_lines")
    op.drop_table("partners")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
