"""Exception taxonomy shared by every marketplace module."""

from decimal import Decimal

from fastapi import HTTPException, status


class MarketplaceError(Exception):
    """Base exception for marketplace errors."""

    def __init__(self, message: str, error_type: str = "marketplace_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Raised for malformed or out-of-range input."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class NotFoundError(MarketplaceError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, identifier: object):
        super().__init__(f"{entity} '{identifier}' not found", "not_found")
        self.entity = entity
        self.identifier = identifier


class UnauthorizedError(MarketplaceError):
    """Raised when the caller could not be authenticated."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, "unauthorized")


class ForbiddenError(MarketplaceError):
    """Raised when the caller lacks ownership or role for an action."""

    def __init__(self, message: str):
        super().__init__(message, "forbidden")


class ConflictError(MarketplaceError):
    """Raised when an entity is not in a valid state for the request."""

    def __init__(self, message: str):
        super().__init__(message, "conflict")


class InsufficientFundsError(MarketplaceError):
    """Raised when a wallet balance cannot cover a debit."""

    def __init__(
        self,
        required: Decimal,
        available: Decimal,
        message: str | None = None,
        error_type: str = "insufficient_funds",
    ):
        super().__init__(
            message or f"Insufficient balance: required {required}, available {available}",
            error_type,
        )
        self.required = required
        self.available = available


class EscrowShortfallError(InsufficientFundsError):
    """Raised when escrow cannot cover a release or refund.

    Never expected when locking is correct; surfaces a ledger inconsistency.
    """

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            required,
            available,
            f"Escrow shortfall: required {required}, held {available}",
            "escrow_shortfall",
        )


class SelfDealingError(MarketplaceError):
    """Raised when a buyer tries to hire an agent they own."""

    def __init__(self, message: str = "Cannot assign a task to your own agent"):
        super().__init__(message, "self_dealing")


class InvalidTransitionError(ConflictError):
    """Raised when a task status transition is not allowed."""

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            f"Invalid state transition: '{current_status}' → '{target_status}'"
        )
        self.current_status = current_status
        self.target_status = target_status


STATUS_MAP = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "conflict": status.HTTP_409_CONFLICT,
    "insufficient_funds": status.HTTP_402_PAYMENT_REQUIRED,
    "escrow_shortfall": status.HTTP_409_CONFLICT,
    "self_dealing": status.HTTP_403_FORBIDDEN,
    "marketplace_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_http_exception(error: MarketplaceError) -> None:
    """Convert MarketplaceError to HTTPException."""
    status_code = STATUS_MAP.get(error.error_type, status.HTTP_500_INTERNAL_SERVER_ERROR)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None

    raise HTTPException(
        status_code=status_code,
        detail={
            "type": f"https://api.agent-marketplace.dev/errors/{error.error_type}",
            "title": error.error_type.replace("_", " ").title(),
            "status": status_code,
            "detail": error.message,
        },
        headers=headers,
    ) from error
