"""
원장 저장소(Ledger Store) - 코인 원장 데이터 접근

이 파일은 원장 시스템의 핵심 저장 로직을 담당합니다:
1. 원장 항목 추가 (추가 전용, 수정/삭제 없음)
2. 음수 잔액 방지 및 지갑 캐시와의 정합성 검증
3. 멱등성 키 조회 (재시도 중복 처리 방지)
4. 타임스탬프 커서 기반 거래 내역 조회
5. 전체 재계산(replay)을 통한 감사

핵심 특징:
- 현재 잔액은 최신 항목의 balance_after로 O(1) 조회
- recompute는 모든 amount의 합으로 잔액을 다시 계산 (불일치 = 무결성 장애)
- 불일치는 자동 보정하지 않고 LedgerInvariantViolation으로 보고
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, desc, func, or_
from sqlalchemy.orm import Session

from dancecoin.core.exceptions import LedgerInvariantViolation
from dancecoin.models.base import utcnow
from dancecoin.models.ledger import REFUND_TYPES, CoinLedgerEntry, LedgerEntryType
from dancecoin.repositories.base import BaseRepository
from dancecoin.schemas.coins import LedgerEntryResponse


class LedgerRepository(BaseRepository[CoinLedgerEntry, LedgerEntryResponse]):
    """
    원장 리포지토리 - 잔액 변동 기록의 유일한 진실의 원천

    주요 기능:
    1. 추가 전용 기록 - 정정은 새로운 보상 항목으로만
    2. 정합성 - 추가 시 지갑 캐시 잔액과 원장 잔액이 같은지 확인
    3. 멱등성 - idempotency_key 유니크 제약
    4. 감사 - recompute / global_totals
    """

    def __init__(self, db: Session):
        super().__init__(CoinLedgerEntry, LedgerEntryResponse, db)

    def latest_entry(self, account_id: str) -> Optional[CoinLedgerEntry]:
        return (
            self.db.query(CoinLedgerEntry)
            .filter(CoinLedgerEntry.account_id == account_id)
            .order_by(desc(CoinLedgerEntry.id))
            .first()
        )

    def latest_balance(self, account_id: str) -> int:
        """
        원장 기준 현재 잔액 (O(1) 성능)

        Returns:
            int: 최신 항목의 balance_after (거래 내역이 없으면 0)
        """
        latest = self.latest_entry(account_id)
        return latest.balance_after if latest else 0

    def append(
        self,
        account_id: str,
        entry_type: LedgerEntryType,
        amount: int,
        expected_balance: int,
        reference_id: Optional[str] = None,
        note: str = "",
        idempotency_key: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> CoinLedgerEntry:
        """
        원장 항목 추가

        Args:
            account_id: 대상 계정
            entry_type: 거래 유형
            amount: 부호 있는 변동량 (0 불가)
            expected_balance: 호출자가 잠금 상태로 읽은 지갑 캐시 잔액
            reference_id: 외부 거래 참조
            note: 메모
            idempotency_key: 멱등성 키
            created_at: 생성 시각 (기본: 현재 UTC)

        Returns:
            CoinLedgerEntry: flush된 원장 항목

        Raises:
            LedgerInvariantViolation:
                - 원장 잔액과 지갑 캐시가 다를 때
                - 차감 후 잔액이 음수가 될 때
                - amount가 0이거나 유형과 부호가 맞지 않을 때
        """
        if amount == 0:
            raise LedgerInvariantViolation("Ledger entries must move the balance", account_id)
        if entry_type.is_debit != (amount < 0):
            raise LedgerInvariantViolation(
                f"Entry type {entry_type.value} does not match amount sign ({amount})",
                account_id,
            )

        current_balance = self.latest_balance(account_id)
        if current_balance != expected_balance:
            raise LedgerInvariantViolation(
                f"Wallet cache balance {expected_balance} differs from ledger balance {current_balance}",
                account_id,
            )

        new_balance = current_balance + amount
        if new_balance < 0:
            raise LedgerInvariantViolation(
                f"Entry of {amount} would drive balance {current_balance} negative",
                account_id,
            )

        entry = CoinLedgerEntry(
            account_id=account_id,
            entry_type=entry_type.value,
            amount=amount,
            balance_after=new_balance,
            reference_id=reference_id,
            note=note or "",
            idempotency_key=idempotency_key,
            created_at=created_at or utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_entry(self, entry_id: int) -> Optional[CoinLedgerEntry]:
        return self.db.get(CoinLedgerEntry, entry_id)

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[CoinLedgerEntry]:
        """멱등성 키로 기존 항목 조회"""
        return (
            self.db.query(CoinLedgerEntry)
            .filter(CoinLedgerEntry.idempotency_key == idempotency_key)
            .first()
        )

    def find_sale_entries(self, idempotency_key: str) -> List[CoinLedgerEntry]:
        """
        여러 항목을 만드는 작업(판매+지급+캐시백)의 재실행용 조회

        판매 키의 항목이 있을 때만 그 판매의 자식 항목을 찾습니다:
        - "{key}:payout:{trainer}" 형식의 commission_payout
        - "{key}:cashback" 형식의 cashback
        자식 항목은 판매 항목과 같은 reference_id(강좌)를 가집니다.
        """
        parent = self.find_by_idempotency_key(idempotency_key)
        if parent is None:
            return []

        children = (
            self.db.query(CoinLedgerEntry)
            .filter(
                CoinLedgerEntry.reference_id == parent.reference_id,
                or_(
                    and_(
                        CoinLedgerEntry.entry_type == LedgerEntryType.COMMISSION_PAYOUT.value,
                        CoinLedgerEntry.idempotency_key.startswith(
                            f"{idempotency_key}:payout:", autoescape=True
                        ),
                    ),
                    and_(
                        CoinLedgerEntry.entry_type == LedgerEntryType.CASHBACK.value,
                        CoinLedgerEntry.idempotency_key == f"{idempotency_key}:cashback",
                    ),
                ),
            )
            .order_by(CoinLedgerEntry.id)
            .all()
        )
        return [parent] + children

    def find_refund_for(
        self, account_id: str, original_entry_id: int
    ) -> Optional[CoinLedgerEntry]:
        """원래 차감 항목을 참조하는 환불 항목 (차감 1건당 환불 1건)"""
        return (
            self.db.query(CoinLedgerEntry)
            .filter(
                CoinLedgerEntry.account_id == account_id,
                CoinLedgerEntry.reference_id == str(original_entry_id),
                CoinLedgerEntry.entry_type.in_(
                    [t.value for t in REFUND_TYPES.values()]
                ),
            )
            .first()
        )

    def entries_for(
        self,
        account_id: str,
        limit: int = 50,
        before: Optional[datetime] = None,
        before_id: Optional[int] = None,
    ) -> List[CoinLedgerEntry]:
        """
        계정 원장 조회 (최신순)

        커서는 마지막으로 본 항목의 (created_at, id) 입니다.
        before_id 없이 before만 주면 해당 시각보다 이전 항목만 반환합니다.
        """
        query = self.db.query(CoinLedgerEntry).filter(
            CoinLedgerEntry.account_id == account_id
        )

        if before is not None:
            if before_id is not None:
                query = query.filter(
                    or_(
                        CoinLedgerEntry.created_at < before,
                        and_(
                            CoinLedgerEntry.created_at == before,
                            CoinLedgerEntry.id < before_id,
                        ),
                    )
                )
            else:
                query = query.filter(CoinLedgerEntry.created_at < before)

        return (
            query.order_by(desc(CoinLedgerEntry.created_at), desc(CoinLedgerEntry.id))
            .limit(limit)
            .all()
        )

    def recompute(self, account_id: str) -> int:
        """전체 재계산 - 모든 amount의 합"""
        result = (
            self.db.query(func.sum(CoinLedgerEntry.amount))
            .filter(CoinLedgerEntry.account_id == account_id)
            .scalar()
        )
        return int(result or 0)

    def count_for(self, account_id: str) -> int:
        return (
            self.db.query(func.count(CoinLedgerEntry.id))
            .filter(CoinLedgerEntry.account_id == account_id)
            .scalar()
            or 0
        )

    def totals_by_type(
        self,
        account_id: str,
        entry_type: LedgerEntryType,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """특정 유형의 (건수, 합계) - created_at 기준 [start, end) 구간"""
        query = self.db.query(
            func.count(CoinLedgerEntry.id), func.sum(CoinLedgerEntry.amount)
        ).filter(
            CoinLedgerEntry.account_id == account_id,
            CoinLedgerEntry.entry_type == entry_type.value,
        )
        if start is not None:
            query = query.filter(CoinLedgerEntry.created_at >= start)
        if end is not None:
            query = query.filter(CoinLedgerEntry.created_at < end)
        count, total = query.one()
        return int(count or 0), int(total or 0)

    def global_totals(self) -> Dict[str, int]:
        """
        전체 시스템 합계

        - 모든 계정의 최신 잔액 합계
        - 모든 변동량의 총합
        두 값은 항상 같아야 합니다 (코인이 허공에서 생기거나 사라지지 않음).
        """
        latest_ids = (
            self.db.query(func.max(CoinLedgerEntry.id))
            .group_by(CoinLedgerEntry.account_id)
        )
        latest_balances = (
            self.db.query(func.sum(CoinLedgerEntry.balance_after))
            .filter(CoinLedgerEntry.id.in_(latest_ids))
            .scalar()
        )
        total_deltas = self.db.query(func.sum(CoinLedgerEntry.amount)).scalar()
        account_count = self.db.query(
            func.count(func.distinct(CoinLedgerEntry.account_id))
        ).scalar()
        total_entries = self.db.query(func.count(CoinLedgerEntry.id)).scalar()

        return {
            "total_balance_from_latest": int(latest_balances or 0),
            "total_deltas": int(total_deltas or 0),
            "account_count": int(account_count or 0),
            "total_entries": int(total_entries or 0),
        }
