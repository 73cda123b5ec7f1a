"""Market data API — current quote and OHLC history."""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query

from tradesim.api.deps import get_services
from tradesim.api.predictions import validate_asset
from tradesim.schemas.market import HistoryRead, MarketRead, QuoteRead, ohlc_points
from tradesim.services.container import Services
from tradesim.utils.constants import HISTORY_INTERVALS, INTERVAL_SECONDS
from tradesim.utils.errors import ValidationError
from tradesim.utils.timeutils import ensure_utc, utcnow

router = APIRouter(prefix="/api/market", tags=["market"])


@router.get("/{asset}", response_model=MarketRead)
async def get_market(asset: str, services: Services = Depends(get_services)):
    quote, history = await services.market.get_market(validate_asset(asset))
    return MarketRead(quote=QuoteRead.model_validate(quote), history=ohlc_points(history))


@router.get("/{asset}/history", response_model=HistoryRead)
async def get_history(
    asset: str,
    start: datetime | None = Query(None, alias="from"),
    end: datetime | None = Query(None, alias="to"),
    interval: str = "1h",
    services: Services = Depends(get_services),
):
    """OHLC bars in [from, to], oldest first. Defaults to the last 7 days."""
    asset = validate_asset(asset)
    if interval not in HISTORY_INTERVALS:
        raise ValidationError(f"interval must be one of: {', '.join(HISTORY_INTERVALS)}")

    end = ensure_utc(end) or utcnow()
    start = ensure_utc(start) or end - timedelta(days=7)
    if start >= end:
        raise ValidationError("'from' must be before 'to'")

    bars = (end - start) / timedelta(seconds=INTERVAL_SECONDS[interval])
    if bars > services.config.max_backtest_bars:
        raise ValidationError(
            f"Requested range spans {int(bars)} {interval} bars, "
            f"limit is {services.config.max_backtest_bars}"
        )

    history = await services.market.get_history(asset, start, end, interval)
    return HistoryRead(asset=asset, interval=interval, points=ohlc_points(history))
