"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the ledger engine.

- Provides clear exception hierarchy
- Enables specific error handling
- Carries a machine code and a human-readable detail
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
├── FeedUnavailable
├── LedgerEngineError
│   ├── ExecutionError
│   │   ├── InsufficientBalance
│   │   └── InsufficientHoldings
│   ├── ConcurrencyConflict
│   ├── PersistenceFailure
│   ├── AuthorizationDenied
│   └── OrderError
│       ├── OrderNotFound
│       ├── OrderNotPending
│       └── OrderRejected

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
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
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all ledger engine errors.

    All exceptions carry:
    - code: stable machine-readable code
    - severity: for alerting
    - context: for debugging
    - timestamp: when the error occurred
    """

    default_code: str = "internal_error"
    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.code = code or self.default_code
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def detail(self) -> str:
        """Human-readable detail string."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}({self.code}): {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Error in configuration."""

    default_code = "invalid_config"
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            context={"config_key": key, "actual_value": str(value)[:100]},
        )


# ============================================================
# PRICE FEED ERRORS
# ============================================================

class FeedUnavailable(TradingException):
    """Price could not be obtained this cycle. Skip, never treat as zero."""

    default_code = "feed_unavailable"
    default_severity = Severity.LOW
    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, symbol: str, reason: str = "", **kwargs):
        context = kwargs.pop("context", {})
        context["symbol"] = symbol
        super().__init__(
            f"Price unavailable for {symbol}" + (f": {reason}" if reason else ""),
            context=context,
            **kwargs,
        )
        self.symbol = symbol


# ============================================================
# LEDGER ENGINE ERRORS
# ============================================================

class LedgerEngineError(TradingException):
    """Base class for ledger mutation errors."""


class ExecutionError(LedgerEngineError):
    """Trade execution could not be applied."""

    default_code = "execution_failed"
    default_classification = ErrorClassification.TRANSIENT


class InsufficientBalance(ExecutionError):
    """Balance does not cover the total cost including fee."""

    default_code = "insufficient_balance"

    def __init__(
        self,
        user_id: str,
        required: Decimal,
        available: Decimal,
        **kwargs,
    ):
        super().__init__(
            f"Required: {required}, Available: {available}",
            context={
                "user_id": user_id,
                "required": str(required),
                "available": str(available),
            },
            **kwargs,
        )
        self.required = required
        self.available = available


class InsufficientHoldings(ExecutionError):
    """Holding quantity does not cover the sell quantity."""

    default_code = "insufficient_holdings"

    def __init__(
        self,
        user_id: str,
        coin_id: str,
        required: Decimal,
        available: Decimal,
        **kwargs,
    ):
        super().__init__(
            f"Selling: {required} {coin_id}, Available: {available}",
            context={
                "user_id": user_id,
                "coin_id": coin_id,
                "required": str(required),
                "available": str(available),
            },
            **kwargs,
        )
        self.required = required
        self.available = available


class ConcurrencyConflict(LedgerEngineError):
    """The pending -> terminal transition was won by another worker."""

    default_code = "concurrency_conflict"
    default_severity = Severity.LOW

    def __init__(self, order_id: str, **kwargs):
        super().__init__(
            f"Order {order_id} is no longer pending",
            context={"order_id": order_id},
            **kwargs,
        )
        self.order_id = order_id


class PersistenceFailure(LedgerEngineError):
    """A ledger write failed; the unit of work was rolled back."""

    default_code = "persistence_failure"
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT


class AuthorizationDenied(LedgerEngineError):
    """The store rejected a write under its row-level policy."""

    default_code = "authorization_denied"
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE


class OrderError(LedgerEngineError):
    """Base for user-visible order errors."""

    default_code = "order_error"
    default_classification = ErrorClassification.NON_RECOVERABLE


class OrderNotFound(OrderError):
    """No order with the given id (for the given user)."""

    default_code = "not_found"

    def __init__(self, order_id: str, **kwargs):
        super().__init__(
            f"Order {order_id} not found",
            context={"order_id": order_id},
            **kwargs,
        )
        self.order_id = order_id


class OrderNotPending(OrderError):
    """Order is already in a terminal status."""

    default_code = "not_pending"

    def __init__(self, order_id: str, status: str, **kwargs):
        super().__init__(
            f"Order {order_id} is {status}, only pending orders can change status",
            context={"order_id": order_id, "status": status},
            **kwargs,
        )
        self.order_id = order_id
        self.status = status


class OrderRejected(OrderError):
    """Order failed validation at placement time."""

    def __init__(self, code: str, detail: str, **kwargs):
        super().__init__(detail, code=code, **kwargs)

