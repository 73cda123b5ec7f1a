"""Backtest API — run a historical backtest to completion in the request."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from tradesim.api.deps import get_run_user, get_services
from tradesim.database import get_session
from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.engine.runner import execute_backtest
from tradesim.models.user import User
from tradesim.schemas.trading_run import BacktestRequest, TradingRunRead
from tradesim.services.container import Services
from tradesim.utils.errors import NotFoundError, UpstreamUnavailable

router = APIRouter(prefix="/api/backtest", tags=["backtest"])


@router.post("", response_model=TradingRunRead)
async def run_backtest(
    data: BacktestRequest,
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    lifecycle = RunLifecycleManager(session, services.config)
    run = lifecycle.create(
        data.to_run_create(),
        owner_id=user.id if user else None,
        model_version=services.predictions.model_version,
    )

    try:
        return await execute_backtest(run.id, services)
    except (NotFoundError, UpstreamUnavailable):
        # No history means nothing ran; don't leave an orphaned open run
        session.refresh(run)
        if run.is_open and not run.total_trades:
            lifecycle.discard(run)
        raise
