from django.core.exceptions import ValidationError


# ---------- Not found (terminal, never retried) ----------
class NotFoundError(Exception):
    """Raised when a referenced ledger object does not exist for the company."""
    pass

class UnknownAccount(NotFoundError):
    """Raised when a posting line references an account outside the company's chart."""
    pass

class TransactionNotFound(NotFoundError):
    """Raised when a JournalEntry id does not exist for the company."""
    pass

class CustomerNotFound(NotFoundError):
    pass


# ---------- Validation (bad input shape, rejected before any write) ----------
class InsufficientLines(ValidationError):
    """Raised when a posting has fewer than two lines."""
    pass

class InvalidAmount(ValidationError):
    """Raised when a posting line amount is not a positive, whole-cent value."""
    pass

class FeedFormatError(ValidationError):
    """Raised when an imported bank feed lacks required columns."""
    pass


# ---------- Integrity (blocks the offending write) ----------
class LedgerIntegrityError(Exception):
    pass

class UnbalancedTransaction(LedgerIntegrityError):
    """Raised when a JournalEntry fails double-entry balance check."""
    pass

class AlreadyReversed(LedgerIntegrityError):
    """Raised when a JournalEntry already has a reversing entry."""
    pass

class AlreadyPostedDifferentPayload(LedgerIntegrityError):
    """Raised when a source document was already posted with a different payload."""
    pass


# ---------- External dependencies (retryable, isolated per recipient) ----------
class ExternalDependencyError(Exception):
    """Raised when an outbound side effect (email dispatch) fails."""
    pass
