"""
Execution Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of every error the ledger engine can surface.

ERROR CATEGORIES:
1. Feed       - Price could not be obtained (skip this cycle)
2. Validation - Balance / holdings re-validation failed
3. Concurrency - Lost the pending -> terminal race (not an error)
4. Persistence - Ledger write failed, unit of work rolled back
5. Authorization - Store policy denied a write
6. Order      - User-visible order errors

RETRYABLE vs NON-RETRYABLE:
- Retryable: the scanner picks the order up again next cycle
- Non-retryable: returned to the caller as a structured error

============================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Set

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from core.exceptions import AuthorizationDenied, PersistenceFailure, LedgerEngineError


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    FEED = "FEED"
    VALIDATION = "VALIDATION"
    CONCURRENCY = "CONCURRENCY"
    PERSISTENCE = "PERSISTENCE"
    AUTHORIZATION = "AUTHORIZATION"
    ORDER = "ORDER"


class ErrorSeverity(Enum):
    """Error severity levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    description: str
    recommended_action: str


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    "feed_unavailable": ErrorCodeInfo(
        code="feed_unavailable",
        category=ErrorCategory.FEED,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Price feed did not return a price in time",
        recommended_action="Skip order this cycle",
    ),
    "insufficient_balance": ErrorCodeInfo(
        code="insufficient_balance",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Balance does not cover cost plus fee",
        recommended_action="Order stays pending; retried next cycle",
    ),
    "insufficient_holdings": ErrorCodeInfo(
        code="insufficient_holdings",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Holding does not cover sell quantity",
        recommended_action="Order stays pending; retried next cycle",
    ),
    "execution_failed": ErrorCodeInfo(
        code="execution_failed",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Execution-time validation failed",
        recommended_action="Order stays pending or is cancelled if market",
    ),
    "concurrency_conflict": ErrorCodeInfo(
        code="concurrency_conflict",
        category=ErrorCategory.CONCURRENCY,
        severity=ErrorSeverity.INFO,
        is_retryable=False,
        description="Order already left pending status",
        recommended_action="None; another worker handled it",
    ),
    "persistence_failure": ErrorCodeInfo(
        code="persistence_failure",
        category=ErrorCategory.PERSISTENCE,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Ledger write failed and was rolled back",
        recommended_action="Retry next cycle; run reconciliation if it persists",
    ),
    "authorization_denied": ErrorCodeInfo(
        code="authorization_denied",
        category=ErrorCategory.AUTHORIZATION,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Row-level policy denied the write",
        recommended_action="Escalate once through the admin capability",
    ),
    "not_found": ErrorCodeInfo(
        code="not_found",
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Order does not exist",
        recommended_action="Check the order id",
    ),
    "not_pending": ErrorCodeInfo(
        code="not_pending",
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Order already completed or cancelled",
        recommended_action="None",
    ),
    "invalid_quantity": ErrorCodeInfo(
        code="invalid_quantity",
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Quantity must be positive",
        recommended_action="Adjust quantity",
    ),
    "invalid_price": ErrorCodeInfo(
        code="invalid_price",
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Price missing or not positive",
        recommended_action="Provide a positive price",
    ),
    "invalid_coin": ErrorCodeInfo(
        code="invalid_coin",
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Coin id missing",
        recommended_action="Provide a coin id",
    ),
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """Get error info for a code, defaulting to an unknown internal error."""
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.PERSISTENCE,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description=f"Unknown error: {code}",
        recommended_action="Investigate error",
    ))

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return code in RETRYABLE_ERROR_CODES


# ============================================================
# STORE ERROR MAPPING
# ============================================================

# PostgreSQL insufficient_privilege, raised by row-level security policies
POLICY_DENIED_SQLSTATE = "42501"


def _sqlstate(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return ""


def map_store_error(exc: SQLAlchemyError, operation: str) -> LedgerEngineError:
    """
    Translate a SQLAlchemy error into the engine taxonomy.

    Policy denials become AuthorizationDenied; everything else is a
    PersistenceFailure.
    """
    if isinstance(exc, DBAPIError) and _sqlstate(exc) == POLICY_DENIED_SQLSTATE:
        return AuthorizationDenied(
            f"{operation} denied by store policy",
            context={"operation": operation},
            cause=exc,
        )
    return PersistenceFailure(
        f"{operation} failed: {exc}",
        context={"operation": operation},
        cause=exc,
    )
