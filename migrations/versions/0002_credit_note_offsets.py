"""Add credit note offsets.

Revision ID: 0002_credit_note_offsets
Revises: 0001_reconciliation_tables
Create Date: 2026-10-19 15:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0002_credit_note_offsets"
down_revision = "0001_reconciliation_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "credit_note_offsets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reference", sa.String(length=64), nullable=False),
        sa.Column("invoice_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("credit_note_ids", postgresql.JSONB(), nullable=False),
        sa.Column("solde", sa.Numeric(18, 2), nullable=False),
        sa.Column("balanced", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("reference", name="uq_credit_note_offsets_reference"),
        sa.UniqueConstraint("invoice_id", name="uq_credit_note_offsets_invoice_id"),
    )


def downgrade() -> None:
    op.drop_table("credit_note_offsets")
