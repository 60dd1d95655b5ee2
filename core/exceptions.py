"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception taxonomy for the execution and risk core.

- Provides clear exception hierarchy
- Separates fatal, terminal and transient failures
- Carries provider diagnostics verbatim
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
├── AuthenticationError
├── ValidationError
│   └── EmergencyStopError
├── RateLimitError
├── NetworkError
├── DecryptionError
├── ExchangeProtocolError
└── RepositoryError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from by the caller."""

    TRANSIENT = "transient"
    """Temporary error, a later attempt may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all execution and risk errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.classification in (
            ErrorClassification.RECOVERABLE,
            ErrorClassification.TRANSIENT,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Missing master key, unsupported exchange id, invalid settings."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key

        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCHANGE ERRORS
# ============================================================

class AuthenticationError(TradingException):
    """Exchange rejected the signature or credentials."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if exchange_id:
            context["exchange_id"] = exchange_id

        super().__init__(message, context=context, **kwargs)
        self.exchange_id = exchange_id


class RateLimitError(TradingException):
    """Request quota exhausted. Terminal for the call, never retried inline."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        limit: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if exchange_id:
            context["exchange_id"] = exchange_id
        if endpoint:
            context["endpoint"] = endpoint
        if limit is not None:
            context["limit"] = limit

        super().__init__(message, context=context, **kwargs)
        self.exchange_id = exchange_id
        self.endpoint = endpoint
        self.limit = limit


class NetworkError(TradingException):
    """Connection failure or timeout talking to an exchange."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if exchange_id:
            context["exchange_id"] = exchange_id
        if endpoint:
            context["endpoint"] = endpoint

        super().__init__(message, context=context, **kwargs)
        self.exchange_id = exchange_id
        self.endpoint = endpoint


class ExchangeProtocolError(TradingException):
    """
    Error payload returned by an exchange.

    The provider's own code and message are kept verbatim
    for diagnosis.
    """

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        provider_code: Optional[str] = None,
        provider_message: Optional[str] = None,
        http_status: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if exchange_id:
            context["exchange_id"] = exchange_id
        if provider_code is not None:
            context["provider_code"] = provider_code
        if provider_message is not None:
            context["provider_message"] = provider_message
        if http_status is not None:
            context["http_status"] = http_status

        super().__init__(message, context=context, **kwargs)
        self.exchange_id = exchange_id
        self.provider_code = provider_code
        self.provider_message = provider_message
        self.http_status = http_status


# ============================================================
# VALIDATION ERRORS
# ============================================================

class ValidationError(TradingException):
    """Amount out of bounds or risk-limit breach. Terminal for the call."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if field:
            context["field"] = field

        super().__init__(message, context=context, **kwargs)
        self.reason = message


class EmergencyStopError(ValidationError):
    """Order refused because the account is emergency-stopped."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        account_id: str,
        reason: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context["account_id"] = account_id

        message = f"Trading halted for account {account_id}"
        if reason:
            message = f"{message}: {reason}"

        super().__init__(message, context=context, **kwargs)
        self.account_id = account_id


# ============================================================
# SECURITY AND STORAGE ERRORS
# ============================================================

class DecryptionError(TradingException):
    """Ciphertext failed authentication: tampered data or wrong master key."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE


class RepositoryError(TradingException):
    """Persistence operation failed."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT
