import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from dancecoin import containers
from dancecoin.core.exception_handlers import (
    handle_base_api_exception,
    handle_http_exception,
    handle_indeterminate,
    handle_invariant_violation,
    handle_store_error,
    handle_unexpected_error,
    handle_validation_error,
)
from dancecoin.core.exceptions import (
    BaseAPIException,
    LedgerIndeterminateError,
    LedgerInvariantViolation,
    LedgerStoreError,
)
from dancecoin.core.logging_middleware import LoggingMiddleware
from dancecoin.logging_config import setup_logging
from dancecoin.routers import admin_router, coin_router, health_router

load_dotenv()
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    container = containers.Container()
    settings = container.config.config()

    setup_logging(settings.LOG_LEVEL, settings.ENVIRONMENT, sql_echo=settings.DEBUG)

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
    )
    app.container = container  # type: ignore

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(LedgerInvariantViolation, handle_invariant_violation)
    app.add_exception_handler(LedgerIndeterminateError, handle_indeterminate)
    app.add_exception_handler(LedgerStoreError, handle_store_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router.router)
    app.include_router(coin_router.router, prefix=settings.API_V1_STR)
    app.include_router(admin_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
