from __future__ import annotations
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from invoicing.models.payment import ErrorKind, PaymentOutcome


class InvoicingError(Exception):
    pass


class PaymentValidationError(InvoicingError):
    """Raised by the store when a payment submission is rejected, before any write."""

    def __init__(self, kind: "ErrorKind", outcome: Optional["PaymentOutcome"] = None):
        super().__init__(kind.value)
        self.kind = kind
        self.outcome = outcome


class InvalidTransition(InvoicingError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Invoice cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class StoreError(InvoicingError):
    """Persistence failure. The underlying error is kept as __cause__."""


class RecordNotFound(StoreError):
    pass


class InvoiceNotFound(RecordNotFound):
    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found")
        self.invoice_id = invoice_id


class DuplicateRecord(StoreError):
    pass


class ConcurrentModificationError(StoreError):
    def __init__(self, invoice_id: str, expected: int, actual: int):
        super().__init__(
            f"Invoice {invoice_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.invoice_id = invoice_id
        self.expected = expected
        self.actual = actual
