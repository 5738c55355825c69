"""Exception hierarchy for solpay-mint.

All library exceptions inherit from SolanaPayError, enabling:
- One ``except`` clause for every protocol failure
- Structured error payloads with machine-readable codes
- A clear split between transient errors (keep polling) and
  terminal ones (reject the request)

Usage:
    from solpay_mint.exceptions import (
        NotFoundError,
        UnconfirmedError,
        ValidationMismatchError,
        is_transient,
    )

    try:
        result = await validate_payment(ledger, signature, recipient, amount)
    except ValidationMismatchError as e:
        reject_order(e.field, e.reason)
    except (NotFoundError, UnconfirmedError):
        schedule_retry()

All exceptions have:
- error_code: Machine-readable error code (e.g., "MALFORMED_URL")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a serializable payload
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .validation import ValidationResult


class SolanaPayError(Exception):
    """Base exception for all solpay-mint errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "SOLANA_PAY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable payload."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# URL codec errors
# =============================================================================

class MalformedURLError(SolanaPayError):
    """The URL is not a valid payment or mint request."""

    error_code = "MALFORMED_URL"

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if parameter:
            details["parameter"] = parameter
        self.parameter = parameter
        super().__init__(message, details=details)


# =============================================================================
# Transaction builder errors (caller-correctable preconditions)
# =============================================================================

class CreateTransactionError(SolanaPayError):
    """A valid transaction can't be created from the inputs provided."""

    error_code = "CREATE_TRANSACTION_ERROR"


class AccountNotFoundError(CreateTransactionError):
    """A required account does not exist on the ledger."""

    error_code = "ACCOUNT_NOT_FOUND"

    def __init__(
        self,
        role: str,
        address: Any,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["role"] = role
        details["address"] = str(address)
        self.role = role
        self.address = str(address)
        super().__init__(f"{role} not found: {address}", details=details)


class InvalidAccountError(CreateTransactionError):
    """An account exists but cannot take part in the transfer."""

    error_code = "INVALID_ACCOUNT"


class InvalidAmountError(InvalidAccountError):
    """Amount is missing, negative or more precise than the asset allows."""

    error_code = "INVALID_AMOUNT"

    def __init__(
        self,
        message: str,
        amount: Optional[Any] = None,
        decimals: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if amount is not None:
            details["amount"] = str(amount)
        if decimals is not None:
            details["decimals"] = decimals
        super().__init__(message, details=details)


class InsufficientFundsError(CreateTransactionError):
    """Payer balance does not cover the requested amount."""

    error_code = "INSUFFICIENT_FUNDS"

    def __init__(
        self,
        message: str,
        available: Optional[int] = None,
        required: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if available is not None:
            details["available"] = available
        if required is not None:
            details["required"] = required
        super().__init__(message, details=details)


class SoldOutError(CreateTransactionError):
    """The inventory program has no items left to mint."""

    error_code = "SOLD_OUT"


# =============================================================================
# Finder / validator errors
# =============================================================================

class NotFoundError(SolanaPayError):
    """No matching transaction yet. Transient: callers keep polling."""

    error_code = "NOT_FOUND"


class UnconfirmedError(SolanaPayError):
    """Transaction exists but has not reached the required commitment."""

    error_code = "UNCONFIRMED"

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        status: Optional[str] = None,
        required: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if signature:
            details["signature"] = signature
        if status:
            details["status"] = status
        if required:
            details["required"] = required
        super().__init__(message, details=details)


class ValidationMismatchError(SolanaPayError):
    """Transaction effects disagree with the request. Terminal, never retried."""

    error_code = "VALIDATION_MISMATCH"

    def __init__(
        self,
        field: str,
        reason: str,
        result: Optional["ValidationResult"] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["field"] = field
        self.field = field
        self.reason = reason
        self.result = result
        super().__init__(f"{field}: {reason}", details=details)


# =============================================================================
# Ledger / orchestration errors
# =============================================================================

class LedgerError(SolanaPayError):
    """Ledger service could not be reached or returned garbage."""

    error_code = "LEDGER_ERROR"


class SolanaRPCError(LedgerError):
    """JSON-RPC call returned an error object."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        error_data: Optional[dict[str, Any]] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if method:
            details["method"] = method
        self.method = method
        self.error_data = error_data or {}
        if self.error_data.get("code") is not None:
            details["rpc_code"] = self.error_data["code"]
        super().__init__(message, details=details)


class PollingTimeoutError(SolanaPayError, TimeoutError):
    """Polling gave up before a terminal answer arrived."""

    error_code = "POLLING_TIMEOUT"

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        attempts: Optional[int] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(message, details=details)


TRANSIENT_ERRORS = (NotFoundError, UnconfirmedError)


def is_transient(exc: BaseException) -> bool:
    """Whether an orchestrator should keep polling after ``exc``."""
    return isinstance(exc, TRANSIENT_ERRORS)
