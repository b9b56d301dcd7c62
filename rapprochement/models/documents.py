"""Partners and the documents that justify bank lines."""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rapprochement.database import Base
from rapprochement.models.base import TimestampMixin, UUIDMixin, enum_values
from rapprochement.services.domain import InvoiceDirection, PartnerKind


class PartnerRecord(UUIDMixin, TimestampMixin, Base):
    """Counterparty directory entry (client, supplier, state body...)."""

    __tablename__ = "partners"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[PartnerKind] = mapped_column(
        SQLEnum(PartnerKind, name="partner_kind_enum", values_callable=enum_values),
        nullable=False,
        default=PartnerKind.SUPPLIER,
    )
    # Reconciliation keywords; blank falls back to the name
    keywords: Mapped[str | None] = mapped_column(Text, nullable=True)


class InvoiceRecord(UUIDMixin, TimestampMixin, Base):
    """Sales or purchase invoice."""

    __tablename__ = "invoices"

    number: Mapped[str] = mapped_column(String(64), nullable=False)
    direction: Mapped[InvoiceDirection] = mapped_column(
        SQLEnum(InvoiceDirection, name="invoice_direction_enum", values_callable=enum_values),
        nullable=False,
    )
    issue_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    partner_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("partners.id", ondelete="SET NULL"), nullable=True
    )
    partner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_ht: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_tva: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_ttc: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    partner: Mapped[PartnerRecord | None] = relationship(PartnerRecord)


class SubscriptionRecord(UUIDMixin, TimestampMixin, Base):
    """Recurring partner subscription with a fixed monthly amount."""

    __tablename__ = "subscriptions"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    partner_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("partners.id", ondelete="SET NULL"), nullable=True
    )
    monthly_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    vat_label: Mapped[str | None] = mapped_column(String(64), nullable=True)
    keywords: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    partner: Mapped[PartnerRecord | None] = relationship(PartnerRecord)


class ChargeDeclarationRecord(UUIDMixin, TimestampMixin, Base):
    """Social or fiscal charge filing."""

    __tablename__ = "charge_declarations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    organism: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    keywords: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    payments: Mapped[list["ChargePaymentRecord"]] = relationship(
        "ChargePaymentRecord",
        back_populates="declaration",
        cascade="all, delete-orphan",
        order_by="ChargePaymentRecord.payment_date",
    )


class ChargePaymentRecord(UUIDMixin, TimestampMixin, Base):
    """Payment event of a charge declaration."""

    __tablename__ = "charge_payments"

    declaration_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("charge_declarations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    declaration: Mapped[ChargeDeclarationRecord] = relationship(
        ChargeDeclarationRecord,
        back_populates="payments",
    )
