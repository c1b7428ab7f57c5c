"""
Ledger Error Taxonomy

Every rejection the core can produce is one of these classes. Each carries
a `kind` so callers can tell "not found", "forbidden", "already exists"
and "validation" apart without parsing messages.

Validation and business-rule errors are never retried. Storage faults live
in `ledger.services.storage.interface` and follow the same `kind` scheme.
"""


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind = "error"
    default_message = "The ledger could not complete the operation"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class ValidationError(LedgerError, ValueError):
    """Malformed input. The caller's fault, never retried."""

    kind = "validation"
    default_message = "Invalid input"


class InvalidPassword(ValidationError):
    """Password digest did not match."""

    default_message = "Invalid password"


class UserNotFound(LedgerError):
    """No user is registered under the given username."""

    kind = "not_found"
    default_message = "User not found"


class UsernameTaken(LedgerError):
    """Registration collided with an existing username."""

    kind = "already_exists"
    default_message = "Username already exists"


class NotFoundOrForbidden(LedgerError):
    """
    The target record is absent or owned by another user.

    Both cases are reported the same way so a caller cannot probe for
    other users' record ids.
    """

    kind = "forbidden"
    default_message = "Record not found or access denied"


class UnknownCounterparty(LedgerError):
    """A split named a counterparty id with no registered user."""

    kind = "business_rule"

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        super().__init__(f"User doesn't exist: {counterparty_id}")


class AmountMismatch(LedgerError):
    """Manual shares (plus the creator's share) do not add up to the total."""

    kind = "business_rule"
    default_message = "Manual amounts (plus your share) must equal the total amount"


def describe_error(error: Exception) -> str:
    """
    Short, specific message for display.

    Unknown exceptions get a generic message; everything raised by the
    core has its own.
    """
    message = getattr(error, "user_message", None)
    if message:
        return message
    return "Unexpected error"
