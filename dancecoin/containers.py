from dependency_injector import containers, providers

from dancecoin.config import Settings
from dancecoin.database.connection import build_engine, build_session_factory
from dancecoin.services.balance_events import build_balance_publisher
from dancecoin.services.coin_ledger_service import CoinLedgerService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class DatabaseModule(containers.DeclarativeContainer):
    """Engine and session factory (one per process)."""

    config = providers.DependenciesContainer()

    engine = providers.Singleton(build_engine, settings=config.config)
    session_factory = providers.Singleton(build_session_factory, engine=engine)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    database = providers.DependenciesContainer()

    balance_publisher = providers.Singleton(build_balance_publisher, settings=config.config)
    coin_ledger_service = providers.Singleton(
        CoinLedgerService,
        session_factory=database.session_factory,
        settings=config.config,
        publisher=balance_publisher,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "dancecoin.routers.coin_router",
            "dancecoin.routers.admin_router",
            "dancecoin.routers.health_router",
        ],
    )

    config = providers.Container(ConfigModule)
    database = providers.Container(DatabaseModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, database=database
    )
