"""
전역 예외 핸들러

모든 오류 응답은 같은 형식을 따릅니다:
    {"success": false, "error": {"code", "message", "details"}, "request_id"}

원장 내부 오류(정합성 위반)의 실제 내용은 로그로만 남기고,
사용자에게는 "잠시 후 다시 시도" 메시지만 전달합니다.
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from .exceptions import (
    BaseAPIException,
    InternalServerError,
    LedgerIndeterminateError,
    LedgerInvariantViolation,
    LedgerStoreError,
    ServiceUnavailableError,
)

logger = logging.getLogger("dancecoin")


def _describe(request: Request) -> str:
    client = request.client.host if request.client else "-"
    request_id = getattr(request.state, "request_id", "-")
    return f"[{request_id}] {request.method} {request.url.path} from {client}"


def _envelope(request: Request, content: Dict[str, Any]) -> Dict[str, Any]:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        content = {**content, "request_id": request_id}
    return content


def _error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content = {
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }
    return JSONResponse(
        status_code=status_code, content=_envelope(request, content), headers=headers
    )


def _api_error(request: Request, exc: BaseAPIException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=_envelope(request, exc.detail)  # type: ignore[arg-type]
    )


async def handle_base_api_exception(request, exc):
    if exc.status_code >= 500:
        logger.error(f"{_describe(request)} -> {exc.status_code} {exc.error_code}: {exc.message}")
    else:
        logger.warning(f"{_describe(request)} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return _api_error(request, exc)


async def handle_http_exception(request, exc):
    logger.warning(f"{_describe(request)} -> {exc.status_code}: {exc.detail}")
    return _error_response(
        request,
        exc.status_code,
        "HTTP_ERROR",
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(request, exc):
    logger.warning(f"{_describe(request)} -> 422: {exc.errors()}")
    return _error_response(
        request,
        422,
        "VALIDATION_001",
        "Validation failed",
        {"errors": exc.errors()},
    )


async def handle_invariant_violation(request, exc: LedgerInvariantViolation):
    logger.error(f"{_describe(request)} invariant violation account={exc.account_id}: {exc.detail}")
    return _api_error(request, InternalServerError())


async def handle_indeterminate(request, exc: LedgerIndeterminateError):
    logger.error(f"{_describe(request)} outcome unknown key={exc.idempotency_key}: {exc.detail}")
    return _api_error(
        request,
        ServiceUnavailableError(
            message="The outcome of this operation is unknown. Check the wallet before retrying with the same idempotency key.",
            error_code="OUTCOME_UNKNOWN",
            details={"idempotency_key": exc.idempotency_key},
        ),
    )


async def handle_store_error(request, exc: LedgerStoreError):
    logger.error(f"{_describe(request)} ledger store unavailable: {exc.detail}")
    return _api_error(request, ServiceUnavailableError())


async def handle_unexpected_error(request, exc):
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"{_describe(request)} unhandled {type(exc).__name__}: {str(exc)}\n{tb_str}"
    )
    return _api_error(request, InternalServerError())
