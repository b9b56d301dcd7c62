"""SQLAlchemy models package."""

from rapprochement.models.documents import (
    ChargeDeclarationRecord,
    ChargePaymentRecord,
    InvoiceRecord,
    PartnerRecord,
    SubscriptionRecord,
)
from rapprochement.models.reconciliation import (
    CreditNoteOffsetRecord,
    InverseLinkRecord,
    ReconciliationResultRecord,
    ReconciliationRuleRecord,
)
from rapprochement.models.statement import StatementLine

__all__ = [
    "ChargeDeclarationRecord",
    "ChargePaymentRecord",
    "CreditNoteOffsetRecord",
    "InverseLinkRecord",
    "InvoiceRecord",
    "PartnerRecord",
    "ReconciliationResultRecord",
    "ReconciliationRuleRecord",
    "StatementLine",
    "SubscriptionRecord",
]
