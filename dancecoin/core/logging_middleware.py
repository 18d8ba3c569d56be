import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("dancecoin.http")

REQUEST_ID_HEADER = "X-Request-ID"
IDEMPOTENCY_HEADER = "Idempotency-Key"
QUIET_PATHS = {"/health"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청/응답 로그 + X-Request-ID 전파

    코인 작업 재시도 추적을 위해 Idempotency-Key 헤더가 있으면 함께 기록합니다.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        path = request.url.path
        label = f"[{request_id}] {request.method} {path}"
        idempotency_key = request.headers.get(IDEMPOTENCY_HEADER)
        if idempotency_key:
            label = f"{label} key={idempotency_key}"

        log_ok = logger.debug if path in QUIET_PATHS else logger.info
        log_ok(f"{label} started")
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{label} raised")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        message = f"{label} -> {response.status_code} in {duration_ms:.1f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            log_ok(message)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
