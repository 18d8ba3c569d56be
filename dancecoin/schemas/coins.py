import enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from dancecoin.models.ledger import LedgerEntryType


class CoinErrorCode(str, enum.Enum):
    """예상 가능한 실패 - 예외가 아니라 결과 코드로 전달"""

    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ALREADY_CLAIMED_TODAY = "ALREADY_CLAIMED_TODAY"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    KEY_EXPIRED = "KEY_EXPIRED"
    KEY_EXHAUSTED = "KEY_EXHAUSTED"
    KEY_ALREADY_REDEEMED = "KEY_ALREADY_REDEEMED"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    NOT_REFUNDABLE = "NOT_REFUNDABLE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"
    UNKNOWN_PACKAGE = "UNKNOWN_PACKAGE"


class PurchaseState(str, enum.Enum):
    """코인 결제 구매의 진행 상태"""

    INITIATED = "INITIATED"
    BALANCE_CHECKED = "BALANCE_CHECKED"
    DEBITED = "DEBITED"
    PAYOUTS_APPLIED = "PAYOUTS_APPLIED"
    CASHBACK_CREDITED = "CASHBACK_CREDITED"
    COMPLETED = "COMPLETED"


class ChargeKind(str, enum.Enum):
    BOOKING = "booking"
    TRAINING_PLAN = "training_plan"
    VIDEO_REVIEW = "video_review"


class WalletResponse(BaseModel):
    """지갑 (잔액 캐시)"""

    account_id: str = Field(..., description="계정 ID")
    balance: int = Field(..., ge=0, description="현재 잔액")
    total_earned: int = Field(..., ge=0, description="누적 적립")
    total_spent: int = Field(..., ge=0, description="누적 사용")
    last_daily_bonus_at: Optional[datetime] = Field(None, description="마지막 일일 보너스 시각")
    updated_at: Optional[datetime] = Field(None, description="마지막 변경 시각")

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    """원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    account_id: str = Field(..., description="계정 ID")
    entry_type: LedgerEntryType = Field(..., description="거래 유형")
    amount: int = Field(..., description="변동량 (양수: 적립, 음수: 차감)")
    balance_after: int = Field(..., description="거래 후 잔액")
    reference_id: Optional[str] = Field(None, description="외부 거래 참조 ID")
    note: str = Field("", description="메모")
    created_at: datetime = Field(..., description="생성 시간")

    class Config:
        from_attributes = True

    @property
    def is_credit(self) -> bool:
        return self.amount > 0


class PayoutLine(BaseModel):
    """트레이너 1명에 대한 수수료 지급 내역"""

    trainer_id: str
    commission_percent: Optional[int] = None  # 재실행 응답에서는 비어 있음
    payout_amount: int
    entry_id: Optional[int] = None


class CoinOperationResult(BaseModel):
    """잔액 변경 작업의 결과

    예상 가능한 실패(잔액 부족, 코드 만료 등)는 success=False + error_code로 전달됩니다.
    """

    success: bool = Field(..., description="성공 여부")
    error_code: Optional[CoinErrorCode] = Field(None, description="실패 코드")
    message: str = Field("", description="응답 메시지")
    wallet: Optional[WalletResponse] = Field(None, description="작업 후 지갑")
    entries: List[LedgerEntryResponse] = Field(default_factory=list, description="생성된 원장 항목")
    replayed: bool = Field(False, description="이미 처리된 멱등성 키의 재실행 여부")
    purchase_state: Optional[PurchaseState] = Field(None, description="구매 진행 상태")
    payouts: List[PayoutLine] = Field(default_factory=list, description="트레이너 지급 내역")
    warnings: List[str] = Field(default_factory=list, description="경고")

    @classmethod
    def failure(
        cls,
        error_code: CoinErrorCode,
        message: str,
        wallet: Optional[WalletResponse] = None,
        purchase_state: Optional[PurchaseState] = None,
    ) -> "CoinOperationResult":
        return cls(
            success=False,
            error_code=error_code,
            message=message,
            wallet=wallet,
            purchase_state=purchase_state,
        )

    @property
    def credited_amount(self) -> int:
        return sum(entry.amount for entry in self.entries if entry.amount > 0)


class WalletOverviewResponse(BaseModel):
    """지갑 + 최근 거래 내역 (최대 100건)"""

    wallet: WalletResponse
    recent_entries: List[LedgerEntryResponse]
    can_claim_daily_bonus: bool
    balance_eur: Decimal = Field(..., description="잔액의 유로 환산 가치")


class LedgerPageResponse(BaseModel):
    """원장 페이지 (최신순, 타임스탬프 커서)"""

    account_id: str
    entries: List[LedgerEntryResponse]
    has_next: bool
    next_before: Optional[datetime] = Field(None, description="다음 페이지 커서 (created_at)")
    next_before_id: Optional[int] = Field(None, description="다음 페이지 커서 (id)")


class IntegrityCheckResponse(BaseModel):
    """계정 정합성 검증 결과"""

    status: str = Field(..., description="OK 또는 MISMATCH")
    account_id: str
    wallet_balance: int
    earned_minus_spent: int
    recomputed_balance: int
    latest_balance_after: int
    entry_count: int
    verified_at: datetime


class GlobalIntegrityResponse(BaseModel):
    """전체 정합성 검증 결과 (최신 잔액 합계 == 전체 변동량 합계 == 지갑 잔액 합계)"""

    status: str
    total_balance_from_latest: int
    total_deltas: int
    total_wallet_balance: int
    account_count: int
    total_entries: int
    verified_at: datetime


class CoinPackageResponse(BaseModel):
    id: str
    coins: int
    bonus_coins: int
    total_coins: int
    price_eur: Decimal
    store_product_id: str


class PriceQuoteResponse(BaseModel):
    price_eur: Decimal
    coins_required: int
    cashback_coins: int


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RedeemKeyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64, description="교환 코드")


class CourseUnlockRequest(BaseModel):
    price_eur: Decimal = Field(..., ge=0, decimal_places=2, description="강좌 가격 (EUR)")
    idempotency_key: str = Field(..., min_length=1, max_length=200)


class ChargeRequest(BaseModel):
    kind: ChargeKind
    reference_id: str = Field(..., min_length=1, max_length=200, description="예약/주문/제출 번호")
    coin_cost: int = Field(..., gt=0)
    idempotency_key: str = Field(..., min_length=1, max_length=200)


class PackagePurchaseRequest(BaseModel):
    """스토어 결제 확인 콜백 (결제 검증은 호출자 책임)"""

    account_id: str = Field(..., min_length=1)
    package_id: str = Field(..., min_length=1)
    store_transaction_id: str = Field(..., min_length=1, max_length=200, description="스토어 결제 ID")


class AdminAdjustRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    delta: int = Field(..., description="조정할 코인 (양수: 지급, 음수: 회수)")
    reason: str = Field(..., min_length=1, max_length=255)
    idempotency_key: Optional[str] = Field(None, max_length=200)


class AdminSetBalanceRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    new_balance: int = Field(..., ge=0)


class RefundRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    original_entry_id: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    idempotency_key: Optional[str] = Field(None, max_length=200)


class RewardCreditRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    entry_type: LedgerEntryType
    amount: int = Field(..., gt=0)
    idempotency_key: str = Field(..., min_length=1, max_length=200)
    note: str = Field("", max_length=255)


class SaleRequest(BaseModel):
    course_id: str = Field(..., min_length=1)
    buyer_account_id: str = Field(..., min_length=1)
    coin_amount: int = Field(..., gt=0)
    idempotency_key: str = Field(..., min_length=1, max_length=200)
    price_eur: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
