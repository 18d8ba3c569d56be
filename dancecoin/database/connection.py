from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from dancecoin.config import Settings
from dancecoin.models.base import Base


def _use_immediate_transactions(engine: Engine) -> None:
    """SQLite: 트랜잭션 시작 시 바로 쓰기 잠금 획득

    pysqlite 기본 동작(지연 BEGIN)에서는 읽기 잠금을 쥔 두 트랜잭션이
    동시에 쓰기로 승격하려다 즉시 "database is locked"가 납니다.
    BEGIN IMMEDIATE로 쓰기 트랜잭션을 busy timeout 안에서 줄 세웁니다.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(settings: Settings, **engine_kwargs) -> Engine:
    """설정에 맞는 엔진 생성

    원장 트랜잭션 타임아웃은 드라이버 수준에서 적용됩니다:
    - PostgreSQL: statement_timeout (잠금 대기 포함)
    - SQLite: busy timeout (쓰기 잠금 대기)
    """
    timeout = settings.LEDGER_TX_TIMEOUT_SECONDS

    if settings.is_sqlite:
        engine = create_engine(
            settings.DATABASE_URL,
            connect_args={"check_same_thread": False, "timeout": timeout},
            **engine_kwargs,
        )
        _use_immediate_transactions(engine)
        return engine

    return create_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        connect_args={"options": f"-c statement_timeout={timeout * 1000}"},
        **engine_kwargs,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Use expire_on_commit=False so results can be read after the commit
    # that produced them.
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )


def create_tables(engine: Engine) -> None:
    """모든 테이블 생성 (모델 모듈을 import해야 metadata에 등록됨)"""
    from dancecoin.models import commission, ledger, redemption_key, wallet  # noqa: F401

    Base.metadata.create_all(bind=engine)
