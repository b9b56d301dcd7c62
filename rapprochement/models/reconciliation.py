"""Reconciliation rule, result and inverse link models."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rapprochement.database import Base
from rapprochement.models.base import TimestampMixin, UUIDMixin, enum_values, utcnow
from rapprochement.services.domain import ResultStatus

if TYPE_CHECKING:
    from rapprochement.models.statement import StatementLine


class ReconciliationRuleRecord(UUIDMixin, TimestampMixin, Base):
    """Stored rule; the condition payload is validated per kind when loaded."""

    __tablename__ = "reconciliation_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    condition: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ReconciliationResultRecord(Base):
    """Versioned reconciliation outcome of one statement line.

    A newer result supersedes the active row instead of deleting it.
    """

    __tablename__ = "reconciliation_results"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    numero_ligne: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("bank_statement_lines.numero_ligne", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ResultStatus] = mapped_column(
        SQLEnum(ResultStatus, name="reconciliation_result_status_enum", values_callable=enum_values),
        nullable=False,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # [{"kind", "document_id", "candidate_id", "reference", "total_ht", "total_tva", "total_ttc"}]
    documents: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    matched_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    residual_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rule_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    inverse_of: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    superseded_by_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("reconciliation_results.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    line: Mapped["StatementLine"] = relationship(
        "StatementLine",
        back_populates="results",
    )


class InverseLinkRecord(Base):
    """Pair of offsetting statement lines."""

    __tablename__ = "inverse_links"
    __table_args__ = (UniqueConstraint("source_line", "target_line", name="uq_inverse_links_pair"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    source_line: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("bank_statement_lines.numero_ligne", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_line: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("bank_statement_lines.numero_ligne", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    solde: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balanced: Mapped[bool] = mapped_column(Boolean, nullable=False)
    manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )


class CreditNoteOffsetRecord(Base):
    """Sales invoice settled against credit notes under one internal reference."""

    __tablename__ = "credit_note_offsets"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    invoice_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    # invoice ids, as strings
    credit_note_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    solde: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balanced: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
