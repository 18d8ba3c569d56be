"""
강좌 수수료 설정 및 판매 수수료 분배

수수료 계산 규칙:
- 트레이너별 지급액 = floor(판매 코인 * 수수료% / 100)
- 지급액이 0인 트레이너는 원장 항목을 만들지 않음
- 나머지(판매액 - 지급 합계)는 플랫폼 몫으로 별도 기록하지 않음

예) 100 코인 판매, 트레이너 A 40%, B 35% → A 40, B 35, 플랫폼 25
"""

from datetime import datetime
from typing import List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from dancecoin.config import Settings
from dancecoin.core.exceptions import CoinOperationFailed
from dancecoin.models.base import utcnow
from dancecoin.models.ledger import LedgerEntryType
from dancecoin.repositories.commission_repository import CommissionRepository
from dancecoin.repositories.ledger_repository import LedgerRepository
from dancecoin.schemas.coins import CoinErrorCode, PayoutLine
from dancecoin.schemas.commission import (
    CommissionResponse,
    CommissionSaveResponse,
    CourseCommissionSummary,
    EarningsPeriod,
    TrainerEarningsResponse,
)
from dancecoin.services.pricing import coins_to_eur
from dancecoin.services.wallet_service import WalletService
from dancecoin.utils.timezone_utils import (
    first_of_month,
    first_of_next_month,
    first_of_previous_month,
    local_date,
    local_midnight,
)

logger = logging.getLogger(__name__)


def payout_amount(sale_coin_amount: int, commission_percent: int) -> int:
    return (sale_coin_amount * commission_percent) // 100


def earnings_period_range(
    period: EarningsPeriod, now: datetime, tz_name: str
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    집계 구간 [start, end) 을 UTC로 반환

    월/연 경계는 로컬 타임존 자정입니다. all_time은 (None, None).
    """
    if period == EarningsPeriod.ALL_TIME:
        return None, None

    today = local_date(now, tz_name)
    if period == EarningsPeriod.THIS_MONTH:
        start, end = first_of_month(today), first_of_next_month(today)
    elif period == EarningsPeriod.LAST_MONTH:
        start, end = first_of_previous_month(today), first_of_month(today)
    else:
        start = today.replace(month=1, day=1)
        end = start.replace(year=start.year + 1)
    return local_midnight(start, tz_name), local_midnight(end, tz_name)


class CommissionService:
    """수수료 테이블 관리 + 판매 수수료 지급 (호출자 트랜잭션 안에서 동작)"""

    def __init__(self, db: Session, settings: Settings, wallet_service: WalletService):
        self.db = db
        self.settings = settings
        self.wallet_service = wallet_service
        self.commission_repo = CommissionRepository(db)
        self.ledger_repo = LedgerRepository(db)

    def _over_100_warning(self, course_id: str, total: int) -> List[str]:
        if total <= 100:
            return []
        logger.warning(
            f"Active commissions for course {course_id} total {total}% (over 100%)"
        )
        return [f"Active commissions for course {course_id} total {total}%, which exceeds 100%"]

    def set_commission(
        self,
        course_id: str,
        trainer_id: str,
        commission_percent: int,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> CommissionSaveResponse:
        """강좌-트레이너 수수료 설정 (upsert)

        Raises:
            CoinOperationFailed: 수수료가 0-100 범위를 벗어남 (INVALID_AMOUNT)
        """
        if not 0 <= commission_percent <= 100:
            raise CoinOperationFailed(
                CoinErrorCode.INVALID_AMOUNT,
                "Commission percent must be between 0 and 100",
            )

        record = self.commission_repo.upsert(
            course_id, trainer_id, commission_percent, admin_id, notes
        )
        total = self.commission_repo.active_total_percent(course_id)
        logger.info(
            f"Commission {record.id} set to {commission_percent}% by {admin_id}"
        )
        return CommissionSaveResponse(
            success=True,
            message="Commission saved",
            commission=CommissionResponse.model_validate(record),
            active_total_percent=total,
            warnings=self._over_100_warning(course_id, total),
        )

    def set_active(
        self, commission_id: str, is_active: bool, admin_id: str
    ) -> Optional[CommissionSaveResponse]:
        """활성/비활성 전환 - 대상이 없으면 None"""
        record = self.commission_repo.get_model(commission_id)
        if record is None:
            return None

        self.commission_repo.set_active(record, is_active, admin_id)
        total = self.commission_repo.active_total_percent(record.course_id)
        logger.info(
            f"Commission {commission_id} {'activated' if is_active else 'deactivated'} by {admin_id}"
        )
        return CommissionSaveResponse(
            success=True,
            message="Commission updated",
            commission=CommissionResponse.model_validate(record),
            active_total_percent=total,
            warnings=self._over_100_warning(record.course_id, total),
        )

    def course_summary(self, course_id: str) -> CourseCommissionSummary:
        records = self.commission_repo.list_for_course(course_id)
        total = sum(r.commission_percent for r in records if r.is_active)
        return CourseCommissionSummary(
            course_id=course_id,
            commissions=[CommissionResponse.model_validate(r) for r in records],
            active_total_percent=total,
            exceeds_100=total > 100,
        )

    def apply_payout(
        self,
        course_id: str,
        sale_coin_amount: int,
        sale_reference: str,
        idempotency_key: str,
        now=None,
    ) -> List[PayoutLine]:
        """
        판매 수수료 지급

        활성 수수료마다 트레이너 지갑에 commission_payout 적립을 기록합니다.
        자식 멱등성 키는 "{판매 키}:payout:{트레이너}" 입니다.
        """
        now = now or utcnow()
        lines: List[PayoutLine] = []

        for commission in self.commission_repo.active_for_course(course_id):
            amount = payout_amount(sale_coin_amount, commission.commission_percent)
            if amount <= 0:
                continue

            entry = self.wallet_service.credit(
                account_id=commission.trainer_id,
                amount=amount,
                entry_type=LedgerEntryType.COMMISSION_PAYOUT,
                reference_id=sale_reference,
                note=f"{commission.commission_percent}% commission for course {course_id}",
                idempotency_key=f"{idempotency_key}:payout:{commission.trainer_id}",
                now=now,
            )
            lines.append(
                PayoutLine(
                    trainer_id=commission.trainer_id,
                    commission_percent=commission.commission_percent,
                    payout_amount=amount,
                    entry_id=entry.id,
                )
            )

        paid = sum(line.payout_amount for line in lines)
        logger.info(
            f"Course {course_id} sale of {sale_coin_amount}: paid {paid} to {len(lines)} trainers, "
            f"platform keeps {sale_coin_amount - paid}"
        )
        return lines

    def active_trainer_ids(self, course_id: str) -> List[str]:
        return [c.trainer_id for c in self.commission_repo.active_for_course(course_id)]

    def trainer_earnings(
        self,
        trainer_id: str,
        period: EarningsPeriod = EarningsPeriod.THIS_MONTH,
        now: Optional[datetime] = None,
    ) -> TrainerEarningsResponse:
        """트레이너 지갑 + 기간별 수수료 수익 (잔액은 기간과 무관한 현재 값)"""
        start, end = earnings_period_range(period, now or utcnow(), self.settings.TIMEZONE)
        wallet = self.wallet_service.get_wallet(trainer_id)
        count, total = self.ledger_repo.totals_by_type(
            trainer_id, LedgerEntryType.COMMISSION_PAYOUT, start=start, end=end
        )
        return TrainerEarningsResponse(
            trainer_id=trainer_id,
            wallet=wallet,
            balance_eur=coins_to_eur(wallet.balance, self.settings),
            period=period,
            period_start=start,
            period_end=end,
            commission_payout_count=count,
            commission_payout_total=total,
        )
