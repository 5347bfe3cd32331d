"""Errors raised by the expense tracker API."""


class ExpenseTrackerError(Exception):
    """Base exception for all expense tracker errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(ExpenseTrackerError):
    """Raised when an expense id does not exist."""

    def __init__(self, message: str = "Expense not found"):
        super().__init__(message, status_code=404)


class PersistenceError(ExpenseTrackerError):
    """Raised when the database is unavailable or rejects a write."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class DuplicateKeyError(PersistenceError):
    """Raised when an insert hits the idempotency key unique index."""

    def __init__(self, message: str = "Duplicate idempotency key"):
        super().__init__(message)


class ConstraintViolationError(PersistenceError):
    """Raised when more than one row shares an idempotency key."""

    def __init__(self, message: str = "Idempotency key is not unique"):
        super().__init__(message)
