"""
API Error Responses.

Maps engine error codes onto HTTP status codes through the error
code registry, and renders errors as ``{code, detail, retryable}``.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from core.exceptions import TradingException
from execution_engine.errors import ErrorCategory, get_error_info, is_retryable


logger = logging.getLogger(__name__)


STATUS_OVERRIDES = {
    "not_found": 404,
    "not_pending": 409,
}

CATEGORY_STATUS = {
    ErrorCategory.ORDER: 400,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONCURRENCY: 409,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.FEED: 503,
}


def http_status_for(code: str) -> int:
    """HTTP status for an engine error code."""
    if code in STATUS_OVERRIDES:
        return STATUS_OVERRIDES[code]
    info = get_error_info(code)
    if info.category in CATEGORY_STATUS:
        return CATEGORY_STATUS[info.category]
    # persistence and unknown codes
    return 503 if info.is_retryable else 500


def error_response(code: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=http_status_for(code),
        content={"code": code, "detail": detail, "retryable": is_retryable(code)},
    )


async def trading_error_handler(request: Request, exc: TradingException) -> JSONResponse:
    status_code = http_status_for(exc.code)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.to_log_format()}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
    return error_response(exc.code, exc.detail)
