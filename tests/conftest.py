from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from dancecoin.config import Settings
from dancecoin.database.connection import build_engine, build_session_factory, create_tables
from dancecoin.services.balance_events import BalanceEventPublisher
from dancecoin.services.coin_ledger_service import CoinLedgerService


class FakeClock:
    """테스트용 고정 시계 (UTC)"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings():
    return Settings(_env_file=None, DATABASE_URL="sqlite://", LEDGER_TX_TIMEOUT_SECONDS=5)


@pytest.fixture
def engine(settings):
    engine = build_engine(settings, poolclass=StaticPool)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    return BalanceEventPublisher()


@pytest.fixture
def coin_service(session_factory, settings, publisher, clock):
    return CoinLedgerService(session_factory, settings, publisher=publisher, clock=clock)


@pytest.fixture
def file_settings(tmp_path):
    """스레드 경쟁 테스트용 파일 SQLite"""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'ledger.db'}",
        LEDGER_TX_TIMEOUT_SECONDS=30,
    )


@pytest.fixture
def file_coin_service(file_settings):
    engine = build_engine(file_settings)
    create_tables(engine)
    yield CoinLedgerService(build_session_factory(engine), file_settings)
    engine.dispose()
