# apar/services/exceptions.py

"""
LEDGER SERVICE ERRORS

Centralized domain errors for allocation, aging and reconciliation.
None of the money-moving paths fail softly: every rejection is one of these.
"""


class LedgerError(Exception):
    """Base exception for all ledger service failures."""


class InvalidAllocationAmount(LedgerError):
    """
    A requested line is <= 0, exceeds the invoice balance, or exceeds what
    the source still has available within the batch.
    """

    def __init__(self, message, *, invoice_id=None, requested_cents=None, limit_cents=None):
        super().__init__(message)
        self.invoice_id = invoice_id
        self.requested_cents = requested_cents
        self.limit_cents = limit_cents


class InsufficientFunds(LedgerError):
    """The batch total exceeds the source's available amount."""

    def __init__(self, message, *, source_id=None, requested_cents=None, available_cents=None):
        super().__init__(message)
        self.source_id = source_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents


class AllocationNotPermitted(LedgerError):
    """Source or invoice is cancelled, or they belong to different accounts."""


class ConcurrentModification(LedgerError):
    """Optimistic version check failed; retry against freshly read balances."""

    def __init__(self, message, *, entity_id=None, expected_version=None):
        super().__init__(message)
        self.entity_id = entity_id
        self.expected_version = expected_version


class NotFound(LedgerError):
    """Referenced invoice, source or counterparty does not exist."""

    def __init__(self, kind, entity_id):
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class ReconciliationDiscrepancy(LedgerError):
    """Statement totals disagree; upstream data is inconsistent."""

    def __init__(self, message, *, counterparty_id=None, discrepancy_cents=0, discrepancies=None):
        super().__init__(message)
        self.counterparty_id = counterparty_id
        self.discrepancy_cents = discrepancy_cents
        self.discrepancies = discrepancies or []


class ReconciliationTimeout(LedgerError):
    """Statement could not be built within the caller's time budget."""


class AgingConfigurationError(LedgerError):
    """Bucket definitions overlap, leave gaps, or are not exhaustive."""


class InvalidPeriod(LedgerError, ValueError):
    """Statement period starts after it ends."""

    def __init__(self, period_start, period_end):
        super().__init__(
            f"period_start {period_start.isoformat()} is after period_end {period_end.isoformat()}"
        )
        self.period_start = period_start
        self.period_end = period_end
