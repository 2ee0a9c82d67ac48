"""Exception hierarchy for the cashier back office."""


class CashierError(Exception):
    """Base exception for all cashier errors."""


class ValidationError(CashierError):
    """Raised when input is rejected before any store access."""


class InvalidAmountError(ValidationError):
    """Raised when a ticket amount is zero or negative."""


class InsufficientBalanceError(CashierError):
    """Raised when a withdrawal exceeds the client's current balance."""

    def __init__(self, client_id: int, requested, balance):
        self.client_id = client_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Insufficient balance for client {client_id}: "
            f"requested {requested}, available {balance}"
        )


class NotFoundError(CashierError):
    """Raised when a referenced entity does not exist."""


class ClientNotFoundError(NotFoundError):
    pass


class TicketNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class DuplicateError(CashierError):
    """Raised when a uniqueness constraint would be violated."""


class DuplicateDniError(DuplicateError):
    pass


class DuplicateUsernameError(DuplicateError):
    pass


class DuplicateTicketCodeError(DuplicateError):
    pass


class AuthenticationError(CashierError):
    """Raised when credentials are missing, wrong or belong to an inactive user."""


class PermissionDeniedError(CashierError):
    """Raised when a role lacks the permission an operation requires."""


class StoreError(CashierError):
    """Raised when the backing store fails (connectivity, timeout, constraint)."""


class ConfigurationError(CashierError):
    """Raised when configuration is invalid or missing."""
