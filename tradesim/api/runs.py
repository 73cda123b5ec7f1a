"""Trading runs API — create, inspect, finalize, trades, live events."""

import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from sqlmodel import Session, select

from tradesim.api.deps import check_run_access, get_run_user, get_services
from tradesim.database import get_session
from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.engine.runner import finalize_run
from tradesim.models.trading_run import TradingRun
from tradesim.models.user import User
from tradesim.schemas.trading_run import (
    PerformanceRead,
    RunCreate,
    RunFinalize,
    TradeList,
    TradeRead,
    TradingRunDetail,
    TradingRunList,
    TradingRunRead,
)
from tradesim.services.auth import decode_access_token
from tradesim.services.container import Services
from tradesim.utils.constants import MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runs", tags=["runs"])


@router.post("", response_model=TradingRunRead, status_code=201)
def create_run(
    data: RunCreate,
    request: Request,
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    run = RunLifecycleManager(session, services.config).create(
        data,
        owner_id=user.id if user else None,
        model_version=services.predictions.model_version,
    )

    # Hand the run to the scheduler: one-shot backtest or recurring live ticks
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        if run.mode == "backtest":
            scheduler.add_backtest_job(run.id)
        else:
            scheduler.add_simulation_job(run.id)

    return run


@router.get("", response_model=TradingRunList)
def list_runs(
    mode: str | None = Query(None, pattern="^(simulation|backtest)$"),
    asset: str | None = None,
    active_only: bool = False,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
):
    # Users see their own runs; guests see guest runs
    runs, total = RunLifecycleManager(session).list_runs(
        owner_id=user.id if user else None,
        mode=mode,
        asset=asset,
        active_only=active_only,
        limit=limit,
        offset=offset,
    )
    return TradingRunList(runs=runs, total=total)


@router.get("/{run_id}", response_model=TradingRunDetail)
def get_run(
    run_id: str,
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
):
    lifecycle = RunLifecycleManager(session)
    run = lifecycle.get(run_id)
    check_run_access(run, user)
    summary = lifecycle.performance(run)
    return TradingRunDetail(
        **TradingRunRead.model_validate(run).model_dump(),
        performance=PerformanceRead(**summary.to_dict()),
    )


@router.patch("/{run_id}", response_model=TradingRunRead)
async def finalize(
    run_id: str,
    data: RunFinalize,
    request: Request,
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    check_run_access(RunLifecycleManager(session).get(run_id), user)

    run = await finalize_run(
        run_id,
        services,
        session_end=data.session_end,
        final_capital=data.final_capital,
    )

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.remove_run_job(run_id)
    return run


@router.get("/{run_id}/trades", response_model=TradeList)
def list_trades(
    run_id: str,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
):
    lifecycle = RunLifecycleManager(session)
    check_run_access(lifecycle.get(run_id), user)
    trades, total = lifecycle.list_trades(run_id, limit=limit, offset=offset)
    return TradeList(trades=[TradeRead.model_validate(t) for t in trades], total=total)


@router.get("/{run_id}/performance", response_model=PerformanceRead)
def run_performance(
    run_id: str,
    user: User | None = Depends(get_run_user),
    session: Session = Depends(get_session),
):
    lifecycle = RunLifecycleManager(session)
    run = lifecycle.get(run_id)
    check_run_access(run, user)
    return PerformanceRead(**lifecycle.performance(run).to_dict())


@router.websocket("/{run_id}/events")
async def run_events(websocket: WebSocket, run_id: str, token: str | None = None):
    """Push tick, trade, skipped and completed events for one run."""
    services: Services = websocket.app.state.services

    with services.session() as session:
        run = session.get(TradingRun, run_id)
    if run is None:
        await websocket.close(code=4404)
        return
    if run.owner_id is not None and not _token_owns(token, run.owner_id, services):
        await websocket.close(code=4403)
        return

    await websocket.accept()
    with services.events.subscription(run_id) as queue:
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event.to_dict())
                if event.type == "completed":
                    break
        except WebSocketDisconnect:
            logger.debug(f"[run_{run_id}] Event subscriber disconnected")
            return
    await websocket.close()


def _token_owns(token: str | None, owner_id: int, services: Services) -> bool:
    username = decode_access_token(token) if token else None
    if username is None:
        return False
    with services.session() as session:
        user = session.exec(select(User).where(User.username == username)).first()
    return user is not None and user.is_active and user.id == owner_id
