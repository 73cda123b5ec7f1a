"""Market data fetching.

Quotes and OHLC candles come from Hyperliquid public info endpoints (no auth).
The SDK is synchronous, so every call runs in the default executor to keep
the event loop free for other runs while a request is in flight.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import pandas as pd

from tradesim.utils.constants import INTERVAL_SECONDS
from tradesim.utils.errors import NotFoundError, RateLimited, UpstreamUnavailable
from tradesim.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

OHLC_COLUMNS = ["open", "high", "low", "close", "volume"]

# Hyperliquid caps one candles_snapshot response at 5000 candles
_MAX_CANDLES_PER_REQUEST = 5000


@dataclass(frozen=True)
class MarketQuote:
    asset: str
    price: float
    volume_24h: float
    price_change_24h: float  # percent
    timestamp: datetime
    source: str = "hyperliquid"


class MarketDataProvider(Protocol):
    async def get_quote(self, asset: str) -> MarketQuote: ...

    async def get_market(self, asset: str) -> tuple[MarketQuote, pd.DataFrame]: ...

    async def get_history(
        self, asset: str, start: datetime, end: datetime, interval: str = "1h"
    ) -> pd.DataFrame: ...


def empty_history() -> pd.DataFrame:
    return pd.DataFrame(
        columns=OHLC_COLUMNS, index=pd.DatetimeIndex([], tz="UTC", name="timestamp"), dtype=float
    )


def quote_from_history(asset: str, price: float, history: pd.DataFrame, source: str) -> MarketQuote:
    """Build a quote from the live price plus the trailing 24h of hourly bars."""
    volume = float(history["volume"].sum()) if not history.empty else 0.0
    if history.empty or history["open"].iloc[0] <= 0:
        change = 0.0
    else:
        change = (price - float(history["open"].iloc[0])) / float(history["open"].iloc[0]) * 100
    return MarketQuote(
        asset=asset,
        price=price,
        volume_24h=volume,
        price_change_24h=change,
        timestamp=utcnow(),
        source=source,
    )


class HyperliquidMarketData:
    """MarketDataProvider backed by the Hyperliquid info API."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url
        self._info = None

    def _client(self):
        # Info() fetches exchange metadata on construction, so build it lazily
        if self._info is None:
            from hyperliquid.info import Info

            self._info = Info(base_url=self.base_url, skip_ws=True)
        return self._info

    async def _call(self, method: str, *args):
        def run():
            return getattr(self._client(), method)(*args)

        try:
            return await asyncio.get_running_loop().run_in_executor(None, run)
        except Exception as e:
            status = getattr(e, "status_code", None)
            if status == 429:
                raise RateLimited("Hyperliquid rate limit exceeded") from e
            logger.error(f"Hyperliquid {method} failed: {e}")
            raise UpstreamUnavailable(f"Market data unavailable: {e}") from e

    async def _mid_price(self, asset: str) -> float:
        mids = await self._call("all_mids")
        ticker = _to_hl_ticker(asset)
        if ticker not in mids:
            raise NotFoundError(f"Unknown asset '{asset}'")
        return float(mids[ticker])

    async def get_quote(self, asset: str) -> MarketQuote:
        quote, _ = await self.get_market(asset)
        return quote

    async def get_market(self, asset: str) -> tuple[MarketQuote, pd.DataFrame]:
        """Quote plus the trailing 24h of hourly bars it was computed from."""
        price = await self._mid_price(asset)
        now = utcnow()
        history = await self._candles(asset, now - timedelta(hours=24), now, "1h")
        return quote_from_history(asset, price, history, source="hyperliquid"), history

    async def get_history(
        self, asset: str, start: datetime, end: datetime, interval: str = "1h"
    ) -> pd.DataFrame:
        """Fetch OHLCV bars in [start, end], chronologically ascending."""
        # Existence check doubles as the 404 path for unknown symbols
        await self._mid_price(asset)
        return await self._candles(asset, start, end, interval)

    async def _candles(
        self, asset: str, start: datetime, end: datetime, interval: str
    ) -> pd.DataFrame:
        ticker = _to_hl_ticker(asset)
        step = timedelta(seconds=_resolution_to_seconds(interval) * _MAX_CANDLES_PER_REQUEST)
        start, end = ensure_utc(start), ensure_utc(end)

        frames = []
        chunk_start = start
        while chunk_start < end:
            chunk_end = min(chunk_start + step, end)
            candles = await self._call(
                "candles_snapshot",
                ticker,
                interval,
                int(chunk_start.timestamp() * 1000),
                int(chunk_end.timestamp() * 1000),
            )
            frames.append(_parse_candles(candles))
            chunk_start = chunk_end

        if not frames:
            return empty_history()
        history = pd.concat(frames)
        history = history[~history.index.duplicated(keep="last")].sort_index()
        return history.loc[(history.index >= start) & (history.index <= end)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _to_hl_ticker(asset: str) -> str:
    """Convert asset name to Hyperliquid ticker format.

    Hyperliquid uses 'kX' instead of '1000X' (e.g. kBONK, kPEPE).
    """
    asset = asset.upper()
    if asset.startswith("1000"):
        return "k" + asset[4:]
    return asset


def _resolution_to_seconds(resolution: str) -> int:
    return INTERVAL_SECONDS.get(resolution, 3600)


def _parse_candles(candles: list[dict]) -> pd.DataFrame:
    """Parse a candles_snapshot response into an OHLCV DataFrame.

    Each candle dict: {"t": 1772092800000, "s": "SOL", "i": "1h",
                       "o": "87.212", "c": "87.498", "h": "87.811", "l": "87.212", "v": "1520.4", ...}
    """
    if not candles:
        return empty_history()

    records = [
        {"t": c["t"], "open": c["o"], "high": c["h"], "low": c["l"], "close": c["c"], "volume": c.get("v", 0)}
        for c in candles
        if c.get("c") is not None
    ]
    df = pd.DataFrame(records)
    if df.empty:
        return empty_history()

    df["t"] = pd.to_datetime(df["t"], unit="ms", utc=True)
    for col in OHLC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.set_index("t").rename_axis("timestamp").dropna(subset=["open", "high", "low", "close"])
    return normalize_ohlc(df)


def normalize_ohlc(df: pd.DataFrame) -> pd.DataFrame:
    """Sort, dedupe and widen high/low so each bar brackets its open and close."""
    df = df[~df.index.duplicated(keep="last")].sort_index()
    prices = df[["open", "high", "low", "close"]]
    df = df.assign(high=prices.max(axis=1), low=prices.min(axis=1))
    df["volume"] = df["volume"].fillna(0.0)
    return df[OHLC_COLUMNS]
