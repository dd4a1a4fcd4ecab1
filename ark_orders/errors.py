"""
Centralized Exceptions
Error taxonomy for the order lifecycle and its HTTP mapping.
"""

from typing import Dict, Any, Optional
from fastapi import status


class ArkClientError(Exception):
    """Base exception for the Ark order client."""

    retryable = False

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.details.setdefault("retryable", self.retryable)
        super().__init__(self.message)

    @property
    def operation(self) -> Optional[str]:
        return self.details.get("operation")

    @property
    def order_hash(self) -> Optional[str]:
        return self.details.get("order_hash")

    @property
    def reason(self) -> Optional[str]:
        return self.details.get("reason")


def _context(operation: Optional[str], order_hash: Optional[str], reason: Optional[str],
             details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    ctx = dict(details or {})
    if operation is not None:
        ctx["operation"] = operation
    if order_hash is not None:
        ctx["order_hash"] = order_hash
    if reason is not None:
        ctx["reason"] = reason
    return ctx


class ConfigurationError(ArkClientError):
    """Unknown network, missing contract role or bad settings. Fatal."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class UnknownRoleError(ConfigurationError):
    """A contract role is absent from the bound network's address table."""

    def __init__(self, role: str, network: str):
        super().__init__(
            f"Contract role '{role}' is not configured for network '{network}'",
            {"role": role, "network": network},
        )
        self.role = role
        self.network = network


class InterfaceResolutionError(ArkClientError):
    """Contract interface could not be fetched or fully decoded."""

    def __init__(self, message: str = "Contract interface unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INTERFACE_ERROR", details)


class ValidationError(ArkClientError):
    """Data validation error."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class IntentValidationError(ValidationError):
    """Order fields rejected before any chain interaction."""

    def __init__(self, errors, details: Optional[Dict[str, Any]] = None):
        self.errors = list(errors)
        ctx = dict(details or {})
        ctx["errors"] = self.errors
        super().__init__("; ".join(self.errors) or "Invalid order intent", ctx)


# -----------------------
# Chain-level failures (raised by providers, classified for retry)
# -----------------------

class ChainError(ArkClientError):
    """Failure reported by the chain RPC boundary."""

    def __init__(self, message: str = "Chain error", error_code: str = "CHAIN_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class TransientChainError(ChainError):
    """Network failure, rate limit or node hiccup. Safe to retry."""

    retryable = True

    def __init__(self, message: str = "Transient chain error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSIENT_CHAIN_ERROR", details)


class NonceCollisionError(TransientChainError):
    """The account nonce used for a broadcast was already taken."""

    def __init__(self, message: str = "Account nonce collision", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.error_code = "NONCE_COLLISION"


class TransactionRevertedError(ChainError):
    """The contract rejected the transaction. Deterministic, never retried."""

    def __init__(self, reason: str, transaction_hash: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        ctx = dict(details or {})
        ctx["reason"] = reason
        if transaction_hash:
            ctx["transaction_hash"] = transaction_hash
        super().__init__(f"Transaction reverted: {reason}", "TX_REVERTED", ctx)
        self.transaction_hash = transaction_hash


# -----------------------
# Lifecycle failures (escalated to callers)
# -----------------------

class ApprovalError(ArkClientError):
    """Allowance transaction reverted or the owner's balance is insufficient."""

    def __init__(self, message: str = "Approval failed", *, operation: Optional[str] = None,
                 order_hash: Optional[str] = None, reason: Optional[str] = None,
                 retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        ctx = _context(operation, order_hash, reason, details)
        ctx["retryable"] = retryable
        super().__init__(message, "APPROVAL_ERROR", ctx)


class SubmissionError(ArkClientError):
    """Order transaction reverted or retries were exhausted."""

    def __init__(self, message: str = "Order submission failed", *, step: str,
                 operation: Optional[str] = None, order_hash: Optional[str] = None,
                 reason: Optional[str] = None, retryable: bool = False,
                 details: Optional[Dict[str, Any]] = None):
        ctx = _context(operation, order_hash, reason, details)
        ctx["step"] = step
        ctx["retryable"] = retryable
        super().__init__(message, "SUBMISSION_ERROR", ctx)
        self.step = step


class CancellationError(ArkClientError):
    """Cancellation rejected: unknown order, unauthorized or already final."""

    def __init__(self, message: str = "Cancellation failed", *, operation: Optional[str] = None,
                 order_hash: Optional[str] = None, reason: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CANCELLATION_ERROR", _context(operation, order_hash, reason, details))


class StatusTimeoutError(ArkClientError, TimeoutError):
    """Status poll deadline passed. The caller may poll again."""

    retryable = True

    def __init__(self, message: str = "Timed out waiting for order status", *,
                 order_hash: Optional[str] = None, last_status: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        ctx = _context("await_status", order_hash, None, details)
        ctx["last_status"] = last_status
        super().__init__(message, "STATUS_TIMEOUT", ctx)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    UnknownRoleError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InterfaceResolutionError: status.HTTP_502_BAD_GATEWAY,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    IntentValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TransientChainError: status.HTTP_503_SERVICE_UNAVAILABLE,
    NonceCollisionError: status.HTTP_503_SERVICE_UNAVAILABLE,
    TransactionRevertedError: status.HTTP_409_CONFLICT,
    ApprovalError: status.HTTP_409_CONFLICT,
    SubmissionError: status.HTTP_409_CONFLICT,
    CancellationError: status.HTTP_409_CONFLICT,
    StatusTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
}


def http_status_for(error: ArkClientError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_TO_HTTP_STATUS:
            return ERROR_TO_HTTP_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def sanitize_error_message(message: str) -> str:
    """Sanitize error messages to prevent information leakage."""
    sensitive_patterns = [
        "password", "secret", "private_key", "private", "api_key", "access_token"
    ]

    sanitized = message
    for pattern in sensitive_patterns:
        if pattern.lower() in sanitized.lower():
            sanitized = sanitized.replace(pattern, "***")

    return sanitized


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Create structured error response for logging and API responses."""
    if isinstance(error, ArkClientError):
        return {
            "error_type": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details,
            "retryable": bool(error.details.get("retryable")),
        }
    return {
        "error_type": "UNKNOWN_ERROR",
        "message": sanitize_error_message(str(error)),
        "details": {},
        "retryable": False,
    }
