from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "DanceCoin Ledger API"
    PROJECT_NAME: str = "DanceCoin Ledger"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./dancecoin.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # 원장 트랜잭션이 이 시간 안에 확정되지 않으면 결과를 "불확정"으로 보고
    LEDGER_TX_TIMEOUT_SECONDS: int = 10

    # Security
    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Coin economy
    COIN_VALUE_CENTS: int = 50  # 1 DanceCoin = 0.50 EUR
    CASHBACK_PERCENT: int = 5  # 코인 결제 시 캐시백 비율
    DAILY_BONUS_COINS: int = 1  # 일일 로그인 보너스
    WALLET_HISTORY_LIMIT: int = 100  # 사용자에게 보여주는 최근 거래 수

    # Timezone (일일 보너스의 "하루" 기준)
    TIMEZONE: str = "Europe/Berlin"

    # AWS
    AWS_REGION: str = "eu-central-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None

    # 잔액 변경 이벤트를 전달할 큐 (비어 있으면 프로세스 내부 구독자에게만 전달)
    SQS_BALANCE_EVENTS_QUEUE: Optional[str] = None

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
