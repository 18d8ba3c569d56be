from datetime import datetime, timedelta
from typing import List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from dancecoin.core.exceptions import CoinOperationFailed
from dancecoin.models.base import utcnow
from dancecoin.models.ledger import CoinLedgerEntry, LedgerEntryType
from dancecoin.models.redemption_key import CoinRedemptionKey
from dancecoin.repositories.redemption_key_repository import RedemptionKeyRepository
from dancecoin.schemas.coins import CoinErrorCode
from dancecoin.schemas.redemption import (
    KeyRedemptionRecordResponse,
    RedemptionKeyListResponse,
    RedemptionKeyResponse,
)
from dancecoin.services.wallet_service import WalletService
from dancecoin.utils.key_codes import generate_key_code, normalize_key_code

logger = logging.getLogger(__name__)

# 자동 생성 코드 충돌 시 재시도 횟수
MAX_GENERATE_ATTEMPTS = 5


class RedemptionKeyService:
    """교환 코드 발급/사용 로직 (호출자 트랜잭션 안에서 동작)"""

    def __init__(self, db: Session, wallet_service: WalletService):
        self.db = db
        self.wallet_service = wallet_service
        self.key_repo = RedemptionKeyRepository(db)

    def generate_code(self) -> str:
        for _ in range(MAX_GENERATE_ATTEMPTS):
            code = generate_key_code()
            if not self.key_repo.code_exists(code):
                return code
        raise CoinOperationFailed(
            CoinErrorCode.DUPLICATE_CODE, "Could not generate a unique code"
        )

    def create(
        self,
        coin_amount: int,
        created_by: str,
        code: Optional[str] = None,
        max_uses: int = 1,
        expires_in: Optional[timedelta] = None,
        note: str = "",
        now: Optional[datetime] = None,
    ) -> RedemptionKeyResponse:
        """교환 코드 생성

        Raises:
            CoinOperationFailed: DUPLICATE_CODE, INVALID_AMOUNT
        """
        now = now or utcnow()
        if coin_amount <= 0 or max_uses < 1:
            raise CoinOperationFailed(
                CoinErrorCode.INVALID_AMOUNT,
                "Coin amount must be positive and max uses at least 1",
            )

        if code:
            code = normalize_key_code(code)
            if self.key_repo.code_exists(code):
                raise CoinOperationFailed(
                    CoinErrorCode.DUPLICATE_CODE, f"Code {code} already exists"
                )
        else:
            code = self.generate_code()

        expires_at = now + expires_in if expires_in else None
        key = self.key_repo.create_key(
            code=code,
            coin_amount=coin_amount,
            max_uses=max_uses,
            created_by=created_by,
            expires_at=expires_at,
            note=note,
        )
        logger.info(
            f"Redemption key {key.id} created by {created_by}: {coin_amount} coins x {max_uses}"
        )
        return self.key_repo.to_response(key, now)

    def _check_usable(self, key: CoinRedemptionKey, now: datetime) -> None:
        if key.expires_at is not None and key.expires_at <= now:
            raise CoinOperationFailed(CoinErrorCode.KEY_EXPIRED, "This code has expired")
        if key.current_uses >= key.max_uses:
            raise CoinOperationFailed(
                CoinErrorCode.KEY_EXHAUSTED, "This code has already been used up"
            )

    def redeem(
        self, code: str, account_id: str, now: Optional[datetime] = None
    ) -> Tuple[CoinRedemptionKey, CoinLedgerEntry]:
        """
        교환 코드 사용

        처리 순서:
        1. 코드 조회 (없으면 KEY_NOT_FOUND)
        2. 만료/소진 확인
        3. 같은 계정의 중복 사용 확인 (KEY_ALREADY_REDEEMED)
        4. 사용 횟수 조건부 증가 - 경쟁에서 진 쪽은 KEY_EXHAUSTED
        5. key_redemption 적립 + 사용 기록

        Returns:
            (교환 코드, 적립 원장 항목)
        """
        now = now or utcnow()
        key = self.key_repo.get_by_code(normalize_key_code(code))
        if key is None:
            raise CoinOperationFailed(CoinErrorCode.KEY_NOT_FOUND, "Invalid code")

        self._check_usable(key, now)

        if self.key_repo.has_redeemed(key.id, account_id):
            raise CoinOperationFailed(
                CoinErrorCode.KEY_ALREADY_REDEEMED, "You have already redeemed this code"
            )

        if not self.key_repo.try_consume(key.id, now):
            self.key_repo.reload(key)
            self._check_usable(key, now)
            # 조건부 UPDATE 실패 = 마지막 사용분을 다른 요청이 가져감
            raise CoinOperationFailed(
                CoinErrorCode.KEY_EXHAUSTED, "This code has already been used up"
            )

        entry = self.wallet_service.credit(
            account_id=account_id,
            amount=key.coin_amount,
            entry_type=LedgerEntryType.KEY_REDEMPTION,
            reference_id=key.id,
            note=f"Redeemed code {key.code}",
            idempotency_key=f"key_redemption:{key.id}:{account_id}",
            now=now,
        )
        self.key_repo.record_redemption(key.id, account_id, entry.id, now)
        self.key_repo.reload(key)

        logger.info(
            f"Key {key.id} redeemed by {account_id} ({key.current_uses}/{key.max_uses})"
        )
        return key, entry

    def list_keys(
        self, limit: int = 100, now: Optional[datetime] = None
    ) -> RedemptionKeyListResponse:
        now = now or utcnow()
        keys = [self.key_repo.to_response(k, now) for k in self.key_repo.list_keys(limit)]
        return RedemptionKeyListResponse(keys=keys, total_count=self.key_repo.count())

    def get_key(self, key_id: str, now: Optional[datetime] = None) -> Optional[RedemptionKeyResponse]:
        key = self.key_repo.get_model(key_id)
        if key is None:
            return None
        return self.key_repo.to_response(key, now or utcnow())

    def redemption_history(self, key_id: str) -> List[KeyRedemptionRecordResponse]:
        return self.key_repo.redemption_history(key_id)
