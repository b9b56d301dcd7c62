"""Imported bank statement lines."""

import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rapprochement.database import Base
from rapprochement.models.base import TimestampMixin

if TYPE_CHECKING:
    from rapprochement.models.documents import PartnerRecord
    from rapprochement.models.reconciliation import ReconciliationResultRecord


class StatementLine(TimestampMixin, Base):
    """Bank statement line keyed by its stable line number.

    Immutable after import except for reconciliation outcomes, which live in
    ``reconciliation_results``.
    """

    __tablename__ = "bank_statement_lines"
    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ck_bank_statement_lines_non_negative"),
        CheckConstraint("NOT (debit > 0 AND credit > 0)", name="ck_bank_statement_lines_one_side"),
    )

    numero_ligne: Mapped[str] = mapped_column(String(64), primary_key=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    debit: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    credit: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    partner_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("partners.id", ondelete="SET NULL"),
        nullable=True,
    )
    partner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    partner: Mapped["PartnerRecord | None"] = relationship("PartnerRecord")
    results: Mapped[list["ReconciliationResultRecord"]] = relationship(
        "ReconciliationResultRecord",
        back_populates="line",
        cascade="all, delete-orphan",
    )
