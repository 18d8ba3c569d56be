from sqlalchemy import BigInteger, Column, Integer, String, Text
from sqlalchemy.schema import CheckConstraint, UniqueConstraint

from dancecoin.models.base import Base, BaseModel, BigIntegerPK, UTCDateTime, utcnow


class CoinRedemptionKey(BaseModel):
    """코인 교환 코드 (관리자 발급, 감사를 위해 삭제하지 않음)"""

    __tablename__ = "coin_redemption_keys"
    __table_args__ = (
        UniqueConstraint("code", name="uq_coin_redemption_keys_code"),
        CheckConstraint("coin_amount > 0", name="ck_coin_redemption_keys_amount"),
        CheckConstraint("max_uses >= 1", name="ck_coin_redemption_keys_max_uses"),
        CheckConstraint(
            "current_uses >= 0 AND current_uses <= max_uses",
            name="ck_coin_redemption_keys_uses",
        ),
    )

    id = Column(String(36), primary_key=True)
    code = Column(String(64), nullable=False)
    coin_amount = Column(Integer, nullable=False)
    max_uses = Column(Integer, nullable=False, default=1)
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(UTCDateTime(), nullable=True)
    created_by = Column(String(128), nullable=False)
    note = Column(Text, nullable=False, default="")


class CoinKeyRedemption(Base):
    """누가 어떤 코드를 교환했는지 기록 (같은 계정의 중복 교환 방지)"""

    __tablename__ = "coin_key_redemptions"
    __table_args__ = (
        UniqueConstraint("key_id", "account_id", name="uq_coin_key_redemptions_key_account"),
    )

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    key_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(128), nullable=False)
    ledger_entry_id = Column(BigInteger, nullable=False)
    redeemed_at = Column(UTCDateTime(), nullable=False, default=utcnow)
