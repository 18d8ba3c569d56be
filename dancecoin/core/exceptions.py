from typing import Any, ClassVar, Dict, Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """API 오류 기본 클래스

    하위 클래스는 HTTP 상태/기본 코드/기본 메시지만 선언합니다.
    error_code는 결과 코드(CoinErrorCode)를 그대로 노출할 때 덮어씁니다.
    """

    http_status: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: ClassVar[str] = "INTERNAL_001"
    default_message: ClassVar[str] = "Something went wrong. Please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.error_code = error_code or self.default_code
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(
            status_code=self.http_status,
            detail={
                "success": False,
                "error": {
                    "code": self.error_code,
                    "message": self.message,
                    "details": self.details,
                },
            },
        )

    def __str__(self) -> str:
        return self.message


class AuthenticationError(BaseAPIException):
    http_status = status.HTTP_401_UNAUTHORIZED
    default_code = "AUTH_001"
    default_message = "Authentication failed"


class AuthorizationError(BaseAPIException):
    http_status = status.HTTP_403_FORBIDDEN
    default_code = "AUTH_002"
    default_message = "Access forbidden"


class ValidationError(BaseAPIException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_code = "VALIDATION_001"
    default_message = "Validation failed"


class BusinessLogicError(BaseAPIException):
    """거부된 코인 작업 (INVALID_AMOUNT, NOT_REFUNDABLE 등)"""
    http_status = status.HTTP_400_BAD_REQUEST
    default_code = "BUSINESS_001"
    default_message = "Operation rejected"


class NotFoundError(BaseAPIException):
    http_status = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND_001"
    default_message = "Resource not found"


class ConflictError(BaseAPIException):
    http_status = status.HTTP_409_CONFLICT
    default_code = "CONFLICT_001"
    default_message = "Resource conflict"


class InternalServerError(BaseAPIException):
    pass


class ServiceUnavailableError(BaseAPIException):
    """저장소 장애 또는 커밋 결과 불명"""
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "UNAVAILABLE_001"
    default_message = "Service temporarily unavailable"


class InsufficientBalanceError(BaseAPIException):
    http_status = status.HTTP_400_BAD_REQUEST
    default_code = "INSUFFICIENT_BALANCE"
    default_message = "Insufficient balance"


# ---------------------------------------------------------------------------
# Service layer
# ---------------------------------------------------------------------------


class ServiceException(Exception):
    """Base exception for service layer errors"""
    def __init__(self, name: str, detail: str):
        super().__init__(f"{name}: {detail}")
        self.name = name
        self.detail = detail


class LedgerInvariantViolation(ServiceException):
    """원장/지갑 정합성 위반 - 작업은 실패 처리되며 자동 보정하지 않음"""
    def __init__(self, detail: str, account_id: Optional[str] = None):
        super().__init__("InvariantViolation", detail)
        self.account_id = account_id


class LedgerIndeterminateError(ServiceException):
    """커밋 결과를 알 수 없음 - recompute로 확인 후 같은 멱등성 키로만 재시도"""
    def __init__(self, detail: str, idempotency_key: Optional[str] = None):
        super().__init__("Indeterminate", detail)
        self.idempotency_key = idempotency_key


class LedgerStoreError(ServiceException):
    """저장소 통신 실패 (트랜잭션은 롤백됨)"""
    def __init__(self, detail: str):
        super().__init__("StoreUnavailable", detail)


class CoinOperationFailed(Exception):
    """트랜잭션을 중단시키는 예상 가능한 실패 (서비스 경계에서 결과 코드로 변환)"""
    def __init__(self, error_code, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
