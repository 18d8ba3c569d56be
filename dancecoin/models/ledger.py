"""
DanceCoin 원장 데이터 모델

잔액에 영향을 주는 모든 이벤트를 계정별로 저장하는 추가 전용(append-only) 원장입니다.
지갑(CoinWallet)은 이 원장에서 파생되는 캐시일 뿐이며, 진실의 원천은 이 테이블입니다.
"""

import enum

from sqlalchemy import BigInteger, Column, Index, String, Text
from sqlalchemy.schema import UniqueConstraint

from dancecoin.models.base import Base, BigIntegerPK, UTCDateTime, utcnow


class LedgerEntryType(str, enum.Enum):
    PURCHASE = "purchase"  # 코인 패키지 인앱 구매
    DAILY_BONUS = "daily_bonus"
    ADMIN_GRANT = "admin_grant"
    ADMIN_REMOVE = "admin_remove"
    KEY_REDEMPTION = "key_redemption"
    COURSE_UNLOCK = "course_unlock"
    REFUND = "refund"
    PROMOTION = "promotion"
    REFERRAL = "referral"
    CASHBACK = "cashback"
    BOOKING_CHARGE = "booking_charge"  # 라이브 클래스 / 개인 레슨 예약
    BOOKING_REFUND = "booking_refund"
    PLAN_CHARGE = "plan_charge"  # 트레이닝 플랜 주문
    PLAN_REFUND = "plan_refund"
    REVIEW_CHARGE = "review_charge"  # 영상 리뷰 제출
    REVIEW_REFUND = "review_refund"
    COMMISSION_PAYOUT = "commission_payout"  # 트레이너 수수료 지급

    @property
    def is_debit(self) -> bool:
        return self in DEBIT_TYPES


DEBIT_TYPES = frozenset(
    {
        LedgerEntryType.ADMIN_REMOVE,
        LedgerEntryType.COURSE_UNLOCK,
        LedgerEntryType.BOOKING_CHARGE,
        LedgerEntryType.PLAN_CHARGE,
        LedgerEntryType.REVIEW_CHARGE,
    }
)

# 차감 유형 -> 해당 환불 유형
REFUND_TYPES = {
    LedgerEntryType.COURSE_UNLOCK: LedgerEntryType.REFUND,
    LedgerEntryType.BOOKING_CHARGE: LedgerEntryType.BOOKING_REFUND,
    LedgerEntryType.PLAN_CHARGE: LedgerEntryType.PLAN_REFUND,
    LedgerEntryType.REVIEW_CHARGE: LedgerEntryType.REVIEW_REFUND,
}


class CoinLedgerEntry(Base):
    """
    코인 원장 테이블 - 모든 코인 거래 내역을 저장

    이 테이블은 다음 원칙을 따릅니다:
    1. 불변성(Immutable): 한번 생성된 레코드는 수정/삭제되지 않음 (updated_at 없음)
    2. 완전성(Complete): 모든 잔액 변동이 기록됨
    3. 멱등성(Idempotent): idempotency_key로 재시도 시 중복 처리 방지
    4. 정합성(Integrity): balance_after는 해당 계정 amount의 누적 합과 같아야 함

    정정은 항상 새로운 보상(compensating) 항목으로 기록합니다.
    예) 환불은 원래 차감 항목을 reference_id로 참조하는 새로운 적립 항목
    """

    __tablename__ = "coin_ledger_entries"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_coin_ledger_idempotency_key"),
        Index("ix_coin_ledger_account_created", "account_id", "created_at", "id"),
    )

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)

    # 계정 ID (사용자 또는 트레이너)
    account_id = Column(String(128), nullable=False, index=True)

    entry_type = Column(String(32), nullable=False)

    # 부호 있는 변동량 - 양수: 적립, 음수: 차감
    amount = Column(BigInteger, nullable=False)

    # 거래 후 잔액 (감사용 스냅샷)
    balance_after = Column(BigInteger, nullable=False)

    # 외부 거래(주문, 예약, 제출, 판매 등)와의 연결
    reference_id = Column(String(255), nullable=True, index=True)

    # 호출자가 제공하는 멱등성 키 - 재시도된 호출은 이미 적용된 키에 대해 no-op
    idempotency_key = Column(String(255), nullable=True)

    note = Column(Text, nullable=False, default="")

    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)
