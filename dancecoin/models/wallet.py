from sqlalchemy import BigInteger, Column, String
from sqlalchemy.schema import CheckConstraint

from dancecoin.models.base import BaseModel, UTCDateTime


class CoinWallet(BaseModel):
    """
    계정별 지갑 - 원장에서 파생된 캐시

    - 첫 잔액 변동 시 지연 생성되며 삭제되지 않음
    - balance == total_earned - total_spent 가 항상 성립해야 함
    - version은 계정 단위 직렬화를 위해 모든 변경 시작 시 증가시킴
      (UPDATE가 행 쓰기 잠금을 잡아 같은 계정의 check-then-mutate를 선형화)
    """

    __tablename__ = "coin_wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_coin_wallets_balance_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_coin_wallets_earned_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_coin_wallets_spent_non_negative"),
    )

    account_id = Column(String(128), primary_key=True)
    balance = Column(BigInteger, nullable=False, default=0)
    total_earned = Column(BigInteger, nullable=False, default=0)
    total_spent = Column(BigInteger, nullable=False, default=0)
    last_daily_bonus_at = Column(UTCDateTime(), nullable=True)
    version = Column(BigInteger, nullable=False, default=0)
