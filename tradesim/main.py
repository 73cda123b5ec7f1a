"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tradesim.config import settings
from tradesim.database import create_db_and_tables
from tradesim.engine.scheduler import RunScheduler
from tradesim.services.container import Services, build_services
from tradesim.utils.errors import RateLimited, TradingError
from tradesim.utils.logging import setup_logging
from tradesim.api import auth, runs, backtest, predictions, market, system

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    scheduler = RunScheduler(app.state.services)
    scheduler.start()
    app.state.scheduler = scheduler

    yield

    scheduler.stop()
    app.state.scheduler = None


async def trading_error_handler(request: Request, exc: TradingError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed input is a 400 across the API, not FastAPI's default 422
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app. Tests inject fake market/prediction services."""
    app = FastAPI(
        title="Trading Simulator",
        description="AI-driven crypto trading simulation and backtesting engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.scheduler = None

    app.add_exception_handler(TradingError, trading_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount routers
    app.include_router(auth.router)
    app.include_router(runs.router)
    app.include_router(backtest.router)
    app.include_router(predictions.router)
    app.include_router(market.router)
    app.include_router(system.router)
    return app


app = create_app()
