"""
Core Module Package.

This package contains the infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, MockClock, SystemClock, as_utc, get_clock
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
    EmergencyStopError,
    ErrorClassification,
    ExchangeProtocolError,
    NetworkError,
    RateLimitError,
    RepositoryError,
    Severity,
    TradingException,
    ValidationError,
)


__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "as_utc",
    "get_clock",
    "AuthenticationError",
    "ConfigurationError",
    "DecryptionError",
    "EmergencyStopError",
    "ErrorClassification",
    "ExchangeProtocolError",
    "NetworkError",
    "RateLimitError",
    "RepositoryError",
    "Severity",
    "TradingException",
    "ValidationError",
]
