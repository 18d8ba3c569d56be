"""
DanceCoin 관리자 API 라우터

관리자용 엔드포인트 (모두 is_admin=True 토큰 필요):
- POST /coins/admin/adjust: 코인 지급/회수
- POST /coins/admin/set-balance: 잔액 직접 설정 (차이만큼 원장 기록)
- POST /coins/admin/refund: 결제 환불
- POST /coins/admin/rewards: 프로모션/추천 보상
- POST /coins/admin/sales: 코인 판매 + 트레이너 수수료 지급
- POST /coins/admin/purchases: 스토어 결제 확인 후 패키지 적립
- POST /coins/admin/keys, GET /coins/admin/keys, GET /coins/admin/keys/{key_id}/redemptions
- PUT /coins/admin/commissions, PATCH /coins/admin/commissions/{commission_id}
- GET /coins/admin/commissions/course/{course_id}
- GET /coins/admin/trainers/{trainer_id}/earnings?period=this_month
- GET /coins/admin/wallets/{account_id}
- GET /coins/admin/integrity/{account_id}, GET /coins/admin/integrity
"""

from typing import List

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query

from dancecoin.containers import Container
from dancecoin.core.auth_middleware import require_admin
from dancecoin.core.exceptions import NotFoundError
from dancecoin.core.result_errors import ensure_success, error_for_code
from dancecoin.schemas.auth import Principal
from dancecoin.schemas.coins import (
    AdminAdjustRequest,
    AdminSetBalanceRequest,
    CoinErrorCode,
    CoinOperationResult,
    GlobalIntegrityResponse,
    IntegrityCheckResponse,
    PackagePurchaseRequest,
    RefundRequest,
    RewardCreditRequest,
    SaleRequest,
    WalletOverviewResponse,
)
from dancecoin.schemas.commission import (
    CommissionActiveRequest,
    CommissionSaveResponse,
    CommissionSetRequest,
    CourseCommissionSummary,
    EarningsPeriod,
    TrainerEarningsResponse,
)
from dancecoin.schemas.redemption import (
    KeyRedemptionRecordResponse,
    RedemptionKeyCreateRequest,
    RedemptionKeyCreateResponse,
    RedemptionKeyListResponse,
)
from dancecoin.services.coin_ledger_service import CoinLedgerService

router = APIRouter(prefix="/coins/admin", tags=["coins-admin"])


@router.post("/adjust", response_model=CoinOperationResult)
@inject
def adjust_balance(
    request: AdminAdjustRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """
    코인 지급/회수

    delta > 0: admin_grant, delta < 0: admin_remove (잔액보다 많이 회수할 수 없음)
    """
    return ensure_success(
        coin_service.admin_adjust(
            request.account_id,
            request.delta,
            admin.account_id,
            request.reason,
            request.idempotency_key,
        )
    )


@router.post("/set-balance", response_model=CoinOperationResult)
@inject
def set_balance(
    request: AdminSetBalanceRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    return ensure_success(
        coin_service.admin_set_balance(
            request.account_id, request.new_balance, admin.account_id
        )
    )


@router.post("/refund", response_model=CoinOperationResult)
@inject
def refund_charge(
    request: RefundRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """
    결제 환불 - 원래 차감 항목을 참조하는 새 적립 항목

    HTTP Status:
        404: 항목 없음 (ENTRY_NOT_FOUND)
        400: 환불 불가 (NOT_REFUNDABLE - 적립 항목이거나 이미 환불됨)
    """
    return ensure_success(
        coin_service.refund(
            request.account_id,
            request.original_entry_id,
            request.reason,
            request.idempotency_key,
        )
    )


@router.post("/rewards", response_model=CoinOperationResult)
@inject
def credit_reward(
    request: RewardCreditRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    return ensure_success(
        coin_service.credit_reward(
            request.account_id,
            request.entry_type,
            request.amount,
            request.idempotency_key,
            request.note,
        )
    )


@router.post("/sales", response_model=CoinOperationResult)
@inject
def record_sale(
    request: SaleRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """코인 판매 + 트레이너 수수료 + 캐시백 (하나의 트랜잭션)"""
    return ensure_success(
        coin_service.record_sale_and_payout(
            request.course_id,
            request.buyer_account_id,
            request.coin_amount,
            request.idempotency_key,
            price_eur=request.price_eur,
        )
    )


@router.post("/purchases", response_model=CoinOperationResult)
@inject
def credit_package_purchase(
    request: PackagePurchaseRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CoinOperationResult:
    """스토어 결제 확인 콜백 - 같은 store_transaction_id는 한 번만 적립"""
    return ensure_success(
        coin_service.credit_package_purchase(
            request.account_id, request.package_id, request.store_transaction_id
        )
    )


@router.post("/keys", response_model=RedemptionKeyCreateResponse)
@inject
def create_key(
    request: RedemptionKeyCreateRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> RedemptionKeyCreateResponse:
    """교환 코드 발급 (code를 비우면 XXXX-XXXX-XXXX 형식으로 생성)"""
    response = coin_service.create_redemption_key(
        admin.account_id,
        request.coin_amount,
        code=request.code,
        max_uses=request.max_uses,
        expires_in_days=request.expires_in_days,
        note=request.note,
    )
    if not response.success:
        raise error_for_code(CoinErrorCode(response.error_code), response.message)
    return response


@router.get("/keys", response_model=RedemptionKeyListResponse)
@inject
def list_keys(
    limit: int = Query(100, ge=1, le=500),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> RedemptionKeyListResponse:
    return coin_service.list_redemption_keys(limit)


@router.get("/keys/{key_id}/redemptions", response_model=List[KeyRedemptionRecordResponse])
@inject
def key_redemptions(
    key_id: str = Path(...),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> List[KeyRedemptionRecordResponse]:
    history = coin_service.key_redemption_history(key_id)
    if history is None:
        raise NotFoundError("Redemption key not found", error_code=CoinErrorCode.KEY_NOT_FOUND.value)
    return history


@router.put("/commissions", response_model=CommissionSaveResponse)
@inject
def set_commission(
    request: CommissionSetRequest,
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CommissionSaveResponse:
    """
    강좌-트레이너 수수료 설정

    활성 합계가 100%를 넘어도 저장되며 warnings에 경고가 포함됩니다.
    """
    response = coin_service.set_commission(
        request.course_id,
        request.trainer_id,
        request.commission_percent,
        admin.account_id,
        request.notes,
    )
    if not response.success:
        raise error_for_code(CoinErrorCode(response.error_code), response.message)
    return response


@router.patch("/commissions/{commission_id}", response_model=CommissionSaveResponse)
@inject
def set_commission_active(
    request: CommissionActiveRequest,
    commission_id: str = Path(...),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CommissionSaveResponse:
    response = coin_service.set_commission_active(
        commission_id, request.is_active, admin.account_id
    )
    if response is None:
        raise NotFoundError("Commission not found")
    return response


@router.get("/commissions/course/{course_id}", response_model=CourseCommissionSummary)
@inject
def course_commissions(
    course_id: str = Path(...),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> CourseCommissionSummary:
    return coin_service.course_commissions(course_id)


@router.get("/trainers/{trainer_id}/earnings", response_model=TrainerEarningsResponse)
@inject
def trainer_earnings(
    trainer_id: str = Path(...),
    period: EarningsPeriod = Query(
        EarningsPeriod.THIS_MONTH, description="this_month, last_month, this_year, all_time"
    ),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> TrainerEarningsResponse:
    return coin_service.trainer_earnings(trainer_id, period)


@router.get("/wallets/{account_id}", response_model=WalletOverviewResponse)
@inject
def get_wallet(
    account_id: str = Path(...),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> WalletOverviewResponse:
    return coin_service.wallet_overview(account_id)


@router.get("/integrity/{account_id}", response_model=IntegrityCheckResponse)
@inject
def verify_account(
    account_id: str = Path(...),
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> IntegrityCheckResponse:
    """지갑 캐시 / earned-spent / 원장 재계산 / 최신 balance_after 비교"""
    return coin_service.verify_account_integrity(account_id)


@router.get("/integrity", response_model=GlobalIntegrityResponse)
@inject
def verify_global(
    admin: Principal = Depends(require_admin),
    coin_service: CoinLedgerService = Depends(
        Provide[Container.services.coin_ledger_service]
    ),
) -> GlobalIntegrityResponse:
    return coin_service.verify_global_integrity()
