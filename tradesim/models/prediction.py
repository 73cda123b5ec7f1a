"""Prediction model — stored AI signals, reused while fresh."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class Prediction(SQLModel, table=True):
    __tablename__ = "prediction"

    id: int | None = Field(default=None, primary_key=True)
    asset: str = Field(index=True)
    model_version: str
    horizon_minutes: int
    current_price: float
    predicted_price: float
    predicted_direction: str  # "up", "down", "hold"
    confidence: float
    features: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), index=True
    )
