from typing import Optional


class FinanceError(Exception):
    status_code = 500


class NotFound(FinanceError, ValueError):
    """Record is missing or belongs to another user."""

    status_code = 404


class ValidationFailed(FinanceError, ValueError):
    status_code = 400

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class Unauthorized(FinanceError):
    status_code = 401


class Forbidden(FinanceError):
    status_code = 403


class InternalFailure(FinanceError, RuntimeError):
    status_code = 500


class InstallmentRegenerationFailed(InternalFailure):
    """The delete+insert of an installment group did not complete.

    The surrounding transaction has been rolled back, so the previous group
    is still in place; callers may retry the edit.
    """

    def __init__(self, purchase_id: str, message: str) -> None:
        super().__init__(message)
        self.purchase_id = purchase_id
