"""Predictions API — latest AI signal for an asset."""

import re

from fastapi import APIRouter, Depends, Query

from tradesim.api.deps import get_services
from tradesim.schemas.market import PredictionRead
from tradesim.services.container import Services
from tradesim.utils.constants import ASSET_SYMBOL_PATTERN, MAX_HORIZON_MINUTES, MIN_HORIZON_MINUTES
from tradesim.utils.errors import ValidationError

router = APIRouter(prefix="/api/predictions", tags=["predictions"])


def validate_asset(asset: str) -> str:
    if not re.match(ASSET_SYMBOL_PATTERN, asset):
        raise ValidationError(f"Invalid asset symbol '{asset}'")
    return asset.upper()


@router.get("/{asset}", response_model=PredictionRead)
async def get_prediction(
    asset: str,
    horizon: int = Query(60, ge=MIN_HORIZON_MINUTES, le=MAX_HORIZON_MINUTES),
    services: Services = Depends(get_services),
):
    """Reuses a cached signal younger than the freshness window."""
    signal = await services.predictions.get_signal(validate_asset(asset), horizon)
    return PredictionRead(
        asset=signal.asset,
        current_price=signal.current_price,
        predicted_price=signal.predicted_price,
        predicted_direction=signal.direction,
        confidence=signal.confidence,
        horizon_minutes=signal.horizon_minutes,
        model_version=signal.model_version,
        generated_at=signal.generated_at,
    )
