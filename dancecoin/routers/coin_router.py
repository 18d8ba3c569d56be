"""
DanceCoin 사용자 API 라우터

사용자용 엔드포인트:
- GET /coins/wallet: 내 지갑 + 최근 거래 내역 (최대 100건)
- GET /coins/ledger: 내 원장 (타임스탬프 커서 페이징)
- POST /coins/daily-bonus: 일일 로그인 보너스 수령
- POST /coins/redeem: 교환 코드 사용
- POST /coins/courses/{course_id}/unlock: 코인으로 강좌 구매
- POST /coins/charges: 예약 / 트레이닝 플랜 / 영상 리뷰 결제
- GET /coins/packages: 코인 패키지 목록
- GET /coins/quote: EUR 가격의 코인 환산

인증 및 권한:
- packages, quote를 제외한 모든 엔드포인트는 Bearer 토큰 인증 필요
- 계정은 항상 토큰의 sub (다른 계정을 대상으로 하는 작업은 관리자 API)
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query

from dancecoin.containers import Container
from dancecoin.core.auth_middleware import get_current_account
from dancecoin.core.exceptions import ValidationError
from dancecoin.core.result_errors import ensure_success
from dancecoin.schemas.auth import Principal
from dancecoin.schemas.coins import (
    ChargeRequest,
    CoinOperationResult,
    CoinPackageResponse,
    CourseUnlockRequest,
    LedgerPageResponse,
    PriceQuoteResponse,
    RedeemKeyRequest,
    WalletOverviewResponse,
)
from dancecoin.services.coin_ledger_service import CoinLedgerService
from dancecoin.services.pricing import InvalidPriceError

router = APIRouter(prefix="/coins", tags=["coins"])


@router.get("/wallet", response_model=WalletOverviewResponse)
@inject
def get_my_wallet(
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> WalletOverviewResponse:
    """
    내 지갑 조회

    Returns:
        WalletOverviewResponse:
        - wallet: 잔액, 누적 적립/사용
        - recent_entries: 최근 거래 (최신순, 최대 100건)
        - can_claim_daily_bonus: 오늘 보너스 수령 가능 여부
        - balance_eur: 잔액의 유로 가치
    """
    return coin_service.wallet_overview(current_account.account_id)


@router.get("/ledger", response_model=LedgerPageResponse)
@inject
def get_my_ledger(
    limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
    before: Optional[datetime] = Query(None, description="커서: 이전 페이지 마지막 항목의 created_at"),
    before_id: Optional[int] = Query(None, description="커서: 이전 페이지 마지막 항목의 id"),
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> LedgerPageResponse:
    """내 원장 페이지 - next_before / next_before_id를 다음 요청에 그대로 전달"""
    return coin_service.ledger_page(
        current_account.account_id, limit=limit, before=before, before_id=before_id
    )


@router.post("/daily-bonus", response_model=CoinOperationResult)
@inject
def claim_daily_bonus(
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """
    일일 보너스 수령

    HTTP Status:
        200: 적립 완료
        409: 오늘 이미 수령 (ALREADY_CLAIMED_TODAY)
    """
    return ensure_success(coin_service.credit_daily_bonus(current_account.account_id))


@router.post("/redeem", response_model=CoinOperationResult)
@inject
def redeem_key(
    request: RedeemKeyRequest,
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """
    교환 코드 사용

    HTTP Status:
        200: 적립 완료
        404: 존재하지 않는 코드
        400: 만료 (KEY_EXPIRED) 또는 소진 (KEY_EXHAUSTED)
        409: 이미 사용한 코드 (KEY_ALREADY_REDEEMED)
    """
    return ensure_success(
        coin_service.redeem_key(current_account.account_id, request.code)
    )


@router.post("/courses/{course_id}/unlock", response_model=CoinOperationResult)
@inject
def unlock_course(
    request: CourseUnlockRequest,
    course_id: str = Path(..., min_length=1, description="강좌 ID"),
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """
    강좌 구매 - 필요 코인 = ceil(가격 / 코인 가치), 캐시백 = floor

    같은 idempotency_key로 재요청하면 이전 결과를 그대로 반환합니다 (replayed=true).
    """
    return ensure_success(
        coin_service.unlock_course(
            current_account.account_id,
            course_id,
            request.price_eur,
            request.idempotency_key,
        )
    )


@router.post("/charges", response_model=CoinOperationResult)
@inject
def create_charge(
    request: ChargeRequest,
    current_account: Principal = Depends(get_current_account),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """예약 / 트레이닝 플랜 / 영상 리뷰 결제"""
    return ensure_success(
        coin_service.charge(
            current_account.account_id,
            request.kind,
            request.reference_id,
            request.coin_cost,
            request.idempotency_key,
        )
    )


@router.get("/packages", response_model=List[CoinPackageResponse])
@inject
def list_packages(
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> List[CoinPackageResponse]:
    return coin_service.list_packages()


@router.get("/quote", response_model=PriceQuoteResponse)
@inject
def quote_price(
    price_eur: Decimal = Query(..., ge=0, description="가격 (EUR)"),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> PriceQuoteResponse:
    try:
        return coin_service.quote(price_eur)
    except InvalidPriceError as e:
        raise ValidationError(str(e))
