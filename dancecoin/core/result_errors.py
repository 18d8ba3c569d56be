from typing import Optional

from dancecoin.core.exceptions import (
    BaseAPIException,
    BusinessLogicError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
)
from dancecoin.schemas.coins import CoinErrorCode, CoinOperationResult

_NOT_FOUND = {
    CoinErrorCode.KEY_NOT_FOUND,
    CoinErrorCode.ENTRY_NOT_FOUND,
    CoinErrorCode.UNKNOWN_PACKAGE,
}

_CONFLICT = {
    CoinErrorCode.ALREADY_CLAIMED_TODAY,
    CoinErrorCode.KEY_ALREADY_REDEEMED,
    CoinErrorCode.DUPLICATE_CODE,
    CoinErrorCode.IDEMPOTENCY_CONFLICT,
}


def error_for_code(
    error_code: CoinErrorCode, message: str, details: Optional[dict] = None
) -> BaseAPIException:
    """도메인 실패 코드 → HTTP 예외"""
    if error_code == CoinErrorCode.INSUFFICIENT_BALANCE:
        return InsufficientBalanceError(message, details)
    if error_code in _NOT_FOUND:
        return NotFoundError(message, details, error_code=error_code.value)
    if error_code in _CONFLICT:
        return ConflictError(message, details, error_code=error_code.value)
    return BusinessLogicError(message, details, error_code=error_code.value)


def ensure_success(result: CoinOperationResult) -> CoinOperationResult:
    if result.success:
        return result

    details = {}
    if result.wallet is not None:
        details["balance"] = result.wallet.balance
    if result.purchase_state is not None:
        details["purchase_state"] = result.purchase_state.value
    raise error_for_code(result.error_code, result.message, details)
