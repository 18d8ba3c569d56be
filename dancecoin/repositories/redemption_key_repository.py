import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from dancecoin.models.redemption_key import CoinKeyRedemption, CoinRedemptionKey
from dancecoin.repositories.base import BaseRepository
from dancecoin.schemas.redemption import (
    KeyRedemptionRecordResponse,
    RedemptionKeyResponse,
)


class RedemptionKeyRepository(BaseRepository[CoinRedemptionKey, RedemptionKeyResponse]):
    """교환 코드 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(CoinRedemptionKey, RedemptionKeyResponse, db)

    def to_response(self, key: CoinRedemptionKey, now: datetime) -> RedemptionKeyResponse:
        expired = key.expires_at is not None and key.expires_at <= now
        return RedemptionKeyResponse(
            id=key.id,
            code=key.code,
            coin_amount=key.coin_amount,
            max_uses=key.max_uses,
            current_uses=key.current_uses,
            expires_at=key.expires_at,
            created_by=key.created_by,
            note=key.note or "",
            created_at=key.created_at,
            is_valid=not expired and key.current_uses < key.max_uses,
            uses_remaining=max(key.max_uses - key.current_uses, 0),
        )

    def create_key(
        self,
        code: str,
        coin_amount: int,
        max_uses: int,
        created_by: str,
        expires_at: Optional[datetime] = None,
        note: str = "",
    ) -> CoinRedemptionKey:
        key = CoinRedemptionKey(
            id=str(uuid.uuid4()),
            code=code,
            coin_amount=coin_amount,
            max_uses=max_uses,
            current_uses=0,
            expires_at=expires_at,
            created_by=created_by,
            note=note or "",
        )
        self.db.add(key)
        self.db.flush()
        return key

    def get_by_code(self, code: str) -> Optional[CoinRedemptionKey]:
        return (
            self.db.query(CoinRedemptionKey)
            .filter(CoinRedemptionKey.code == code)
            .first()
        )

    def code_exists(self, code: str) -> bool:
        return self.get_by_code(code) is not None

    def try_consume(self, key_id: str, now: datetime) -> bool:
        """
        사용 횟수 원자적 증가

        current_uses < max_uses 이고 만료되지 않은 경우에만 1 증가시킵니다.
        동시에 마지막 사용분을 두고 경쟁하면 정확히 한 쪽만 성공합니다.

        Returns:
            bool: 증가에 성공했는지 여부
        """
        updated = (
            self.db.query(CoinRedemptionKey)
            .filter(
                CoinRedemptionKey.id == key_id,
                CoinRedemptionKey.current_uses < CoinRedemptionKey.max_uses,
                or_(
                    CoinRedemptionKey.expires_at.is_(None),
                    CoinRedemptionKey.expires_at > now,
                ),
            )
            .update(
                {
                    CoinRedemptionKey.current_uses: CoinRedemptionKey.current_uses + 1,
                    CoinRedemptionKey.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def reload(self, key: CoinRedemptionKey) -> CoinRedemptionKey:
        self.db.refresh(key)
        return key

    def has_redeemed(self, key_id: str, account_id: str) -> bool:
        return (
            self.db.query(CoinKeyRedemption.id)
            .filter(
                CoinKeyRedemption.key_id == key_id,
                CoinKeyRedemption.account_id == account_id,
            )
            .first()
            is not None
        )

    def record_redemption(
        self, key_id: str, account_id: str, ledger_entry_id: int, redeemed_at: datetime
    ) -> CoinKeyRedemption:
        record = CoinKeyRedemption(
            key_id=key_id,
            account_id=account_id,
            ledger_entry_id=ledger_entry_id,
            redeemed_at=redeemed_at,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_keys(self, limit: int = 100) -> List[CoinRedemptionKey]:
        return (
            self.db.query(CoinRedemptionKey)
            .order_by(desc(CoinRedemptionKey.created_at))
            .limit(limit)
            .all()
        )

    def redemption_history(self, key_id: str) -> List[KeyRedemptionRecordResponse]:
        records = (
            self.db.query(CoinKeyRedemption)
            .filter(CoinKeyRedemption.key_id == key_id)
            .order_by(CoinKeyRedemption.redeemed_at, CoinKeyRedemption.id)
            .all()
        )
        return [KeyRedemptionRecordResponse.model_validate(r) for r in records]
