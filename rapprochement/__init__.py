"""Bank statement reconciliation engine."""
