from datetime import datetime
from typing import Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from dancecoin.config import Settings
from dancecoin.core.exceptions import CoinOperationFailed
from dancecoin.models.base import utcnow
from dancecoin.models.ledger import CoinLedgerEntry, LedgerEntryType
from dancecoin.models.wallet import CoinWallet
from dancecoin.repositories.ledger_repository import LedgerRepository
from dancecoin.repositories.wallet_repository import WalletRepository
from dancecoin.schemas.coins import CoinErrorCode, LedgerEntryResponse, WalletResponse
from dancecoin.utils.timezone_utils import local_date

logger = logging.getLogger(__name__)


class WalletService:
    """계정 지갑 변경 로직

    호출자가 소유한 세션(트랜잭션) 안에서 동작하며 커밋하지 않습니다.
    모든 변경은 지갑 잠금 → 검증 → 원장 추가 → 캐시 갱신 순서로 진행됩니다.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.ledger_repo = LedgerRepository(db)
        self.wallet_repo = WalletRepository(db)

    def lock(self, account_id: str) -> CoinWallet:
        return self.wallet_repo.lock_for_update(account_id)

    def lock_accounts(self, account_ids: Iterable[str]) -> None:
        """여러 계정을 정렬된 순서로 잠금 (교착 상태 방지)"""
        for account_id in sorted(set(account_ids)):
            self.wallet_repo.lock_for_update(account_id)

    def _append(
        self,
        wallet: CoinWallet,
        entry_type: LedgerEntryType,
        amount: int,
        reference_id: Optional[str],
        note: str,
        idempotency_key: Optional[str],
        now: datetime,
    ) -> CoinLedgerEntry:
        entry = self.ledger_repo.append(
            account_id=wallet.account_id,
            entry_type=entry_type,
            amount=amount,
            expected_balance=wallet.balance,
            reference_id=reference_id,
            note=note,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        self.wallet_repo.apply_delta(wallet, amount)
        return entry

    def credit(
        self,
        account_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        reference_id: Optional[str] = None,
        note: str = "",
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CoinLedgerEntry:
        """코인 적립

        Raises:
            CoinOperationFailed: amount가 0 이하 (INVALID_AMOUNT)
        """
        if amount <= 0:
            raise CoinOperationFailed(
                CoinErrorCode.INVALID_AMOUNT, "Amount must be greater than zero"
            )

        wallet = self.lock(account_id)
        entry = self._append(
            wallet, entry_type, amount, reference_id, note, idempotency_key, now or utcnow()
        )
        logger.info(
            f"Credited {amount} coins ({entry_type.value}) to {account_id}, balance {wallet.balance}"
        )
        return entry

    def debit(
        self,
        account_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        reference_id: Optional[str] = None,
        note: str = "",
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CoinLedgerEntry:
        """코인 차감 (amount는 양수로 전달)

        Raises:
            CoinOperationFailed: 잔액 부족 (INSUFFICIENT_BALANCE) 또는 잘못된 금액
        """
        if amount <= 0:
            raise CoinOperationFailed(
                CoinErrorCode.INVALID_AMOUNT, "Amount must be greater than zero"
            )

        wallet = self.lock(account_id)
        if wallet.balance < amount:
            logger.warning(
                f"Insufficient balance for {account_id}: required {amount}, available {wallet.balance}"
            )
            raise CoinOperationFailed(
                CoinErrorCode.INSUFFICIENT_BALANCE,
                f"Not enough coins. Required: {amount}, available: {wallet.balance}",
            )

        entry = self._append(
            wallet, entry_type, -amount, reference_id, note, idempotency_key, now or utcnow()
        )
        logger.info(
            f"Debited {amount} coins ({entry_type.value}) from {account_id}, balance {wallet.balance}"
        )
        return entry

    def can_claim_daily_bonus(
        self, last_claimed_at: Optional[datetime], now: datetime
    ) -> bool:
        """마지막 수령일(로컬 날짜)이 오늘보다 이전이면 수령 가능"""
        if last_claimed_at is None:
            return True
        tz_name = self.settings.TIMEZONE
        return local_date(last_claimed_at, tz_name) < local_date(now, tz_name)

    def daily_bonus_key(self, account_id: str, now: datetime) -> str:
        return f"daily_bonus:{account_id}:{local_date(now, self.settings.TIMEZONE).isoformat()}"

    def claim_daily_bonus(
        self, account_id: str, bonus_amount: int, now: datetime
    ) -> CoinLedgerEntry:
        """일일 보너스 수령

        Raises:
            CoinOperationFailed: 같은 로컬 날짜에 이미 수령 (ALREADY_CLAIMED_TODAY)
        """
        wallet = self.lock(account_id)
        if not self.can_claim_daily_bonus(wallet.last_daily_bonus_at, now):
            raise CoinOperationFailed(
                CoinErrorCode.ALREADY_CLAIMED_TODAY,
                "Daily bonus already claimed today",
            )

        entry = self._append(
            wallet,
            LedgerEntryType.DAILY_BONUS,
            bonus_amount,
            None,
            "Daily login bonus",
            self.daily_bonus_key(account_id, now),
            now,
        )
        self.wallet_repo.mark_daily_bonus(wallet, now)
        logger.info(f"Daily bonus of {bonus_amount} credited to {account_id}")
        return entry

    def get_wallet(self, account_id: str) -> WalletResponse:
        return self.wallet_repo.get_or_empty(account_id)

    def history(
        self, account_id: str, limit: Optional[int] = None
    ) -> List[LedgerEntryResponse]:
        """사용자에게 보여주는 최근 거래 내역 (최대 WALLET_HISTORY_LIMIT건)"""
        cap = self.settings.WALLET_HISTORY_LIMIT
        limit = cap if limit is None else min(limit, cap)
        entries = self.ledger_repo.entries_for(account_id, limit=limit)
        return [LedgerEntryResponse.model_validate(e) for e in entries]
