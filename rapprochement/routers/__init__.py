"""API routers package."""

from rapprochement.routers import reconciliation

__all__ = ["reconciliation"]
