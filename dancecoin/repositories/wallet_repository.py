from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from dancecoin.core.exceptions import LedgerInvariantViolation
from dancecoin.models.base import utcnow
from dancecoin.models.wallet import CoinWallet
from dancecoin.repositories.base import BaseRepository
from dancecoin.schemas.coins import WalletResponse


class WalletRepository(BaseRepository[CoinWallet, WalletResponse]):
    """
    지갑 리포지토리 - 원장에서 파생된 잔액 캐시

    변경 작업은 항상 lock_for_update()로 시작해야 합니다.
    version 증가 UPDATE가 계정 행의 쓰기 잠금을 트랜잭션 끝까지 유지하므로
    같은 계정에 대한 "확인 후 변경"이 직렬화됩니다.
    """

    def __init__(self, db: Session):
        super().__init__(CoinWallet, WalletResponse, db)

    def lock_for_update(self, account_id: str) -> CoinWallet:
        """
        계정 지갑을 잠그고 반환 (없으면 생성)

        동시에 같은 계정의 지갑을 생성하면 한쪽이 IntegrityError를 받습니다.
        호출자(서비스)가 롤백 후 한 번 재시도합니다.
        """
        updated = (
            self.db.query(CoinWallet)
            .filter(CoinWallet.account_id == account_id)
            .update(
                {CoinWallet.version: CoinWallet.version + 1},
                synchronize_session=False,
            )
        )

        if updated == 0:
            wallet = CoinWallet(
                account_id=account_id,
                balance=0,
                total_earned=0,
                total_spent=0,
                version=1,
            )
            self.db.add(wallet)
            self.db.flush()
            return wallet

        wallet = self.db.get(CoinWallet, account_id)
        # 다른 트랜잭션이 커밋한 값을 반영
        self.db.refresh(wallet)
        return wallet

    def get_wallet(self, account_id: str) -> Optional[CoinWallet]:
        return self.db.get(CoinWallet, account_id)

    def get_or_empty(self, account_id: str) -> WalletResponse:
        """읽기 전용 조회 - 지갑이 없으면 잔액 0 응답 (생성하지 않음)"""
        wallet = self.get_wallet(account_id)
        if wallet is None:
            return WalletResponse(
                account_id=account_id,
                balance=0,
                total_earned=0,
                total_spent=0,
            )
        return self._to_schema(wallet)

    def apply_delta(self, wallet: CoinWallet, amount: int) -> CoinWallet:
        """잠긴 지갑에 원장 항목 변동을 반영"""
        new_balance = wallet.balance + amount
        if new_balance < 0:
            raise LedgerInvariantViolation(
                f"Wallet balance would become negative ({new_balance})",
                wallet.account_id,
            )

        wallet.balance = new_balance
        if amount > 0:
            wallet.total_earned = wallet.total_earned + amount
        else:
            wallet.total_spent = wallet.total_spent - amount
        wallet.updated_at = utcnow()

        if wallet.balance != wallet.total_earned - wallet.total_spent:
            raise LedgerInvariantViolation(
                "Wallet balance does not equal total_earned - total_spent",
                wallet.account_id,
            )

        self.db.flush()
        return wallet

    def mark_daily_bonus(self, wallet: CoinWallet, claimed_at: datetime) -> None:
        wallet.last_daily_bonus_at = claimed_at
        self.db.flush()

    def total_balance(self) -> int:
        result = self.db.query(func.sum(CoinWallet.balance)).scalar()
        return int(result or 0)
