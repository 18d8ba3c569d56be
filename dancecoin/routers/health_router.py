import logging

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from dancecoin.config import Settings
from dancecoin.containers import Container
from dancecoin.database.session import session_scope
from dancecoin.models.base import utcnow
from dancecoin.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
@inject
def health_check(
    session_factory: sessionmaker = Depends(
        Provide[Container.database.session_factory]
    ),
    settings: Settings = Depends(Provide[Container.config.config]),
):
    """Health check endpoint (원장 저장소 연결 확인 포함)."""
    try:
        with session_scope(session_factory) as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {str(e)}")
        unhealthy = HealthCheckResponse(
            status="unhealthy",
            ledger_store="unavailable",
            environment=settings.ENVIRONMENT,
            checked_at=utcnow(),
            error="Ledger store unreachable",
        )
        return JSONResponse(status_code=503, content=unhealthy.model_dump(mode="json"))

    return HealthCheckResponse(environment=settings.ENVIRONMENT, checked_at=utcnow())
