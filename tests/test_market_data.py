"""Tests for the Hyperliquid market data provider and candle parsing."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pandas as pd
import pytest

from tradesim.services.market_data import (
    HyperliquidMarketData,
    _parse_candles,
    _to_hl_ticker,
    normalize_ohlc,
)
from tradesim.utils.errors import NotFoundError, RateLimited, UpstreamUnavailable

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _candle(hours: int, o, h, l, c, v="10", base: datetime = T0):
    return {
        "t": int((base + timedelta(hours=hours)).timestamp() * 1000),
        "s": "BTC",
        "i": "1h",
        "o": str(o),
        "h": str(h),
        "l": str(l),
        "c": str(c),
        "v": str(v),
    }


def _provider(candles=None, mids=None) -> HyperliquidMarketData:
    provider = HyperliquidMarketData()
    info = MagicMock()
    info.all_mids.return_value = mids if mids is not None else {"BTC": "50000.5", "kPEPE": "0.01"}
    info.candles_snapshot.return_value = candles or []
    provider._info = info
    return provider


# ---------------------------------------------------------------------------
# 1. Candle parsing
# ---------------------------------------------------------------------------

class TestParseCandles:
    def test_parses_and_sorts_ascending(self):
        df = _parse_candles([
            _candle(2, 102, 103, 101, 102.5),
            _candle(0, 100, 101, 99, 100.5),
            _candle(1, 100.5, 102, 100, 101.5),
        ])
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]
        assert df.index.is_monotonic_increasing
        assert df.index[0] == pd.Timestamp(T0)
        assert df["close"].tolist() == [100.5, 101.5, 102.5]

    def test_high_low_bracket_open_and_close(self):
        # Upstream bar with a low above its close gets widened
        df = _parse_candles([_candle(0, 100, 100, 99.5, 99)])
        row = df.iloc[0]
        assert row["high"] >= max(row["open"], row["close"], row["low"])
        assert row["low"] <= min(row["open"], row["close"])

    def test_duplicate_timestamps_keep_last(self):
        df = _parse_candles([_candle(0, 1, 2, 1, 1.5), _candle(0, 1, 2, 1, 1.8)])
        assert len(df) == 1
        assert df["close"].iloc[0] == 1.8

    def test_empty_response(self):
        df = _parse_candles([])
        assert df.empty
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]

    def test_missing_close_dropped(self):
        bad = _candle(1, 1, 2, 1, 1)
        bad["c"] = None
        assert len(_parse_candles([_candle(0, 1, 2, 1, 1.5), bad])) == 1


def test_normalize_fills_missing_volume():
    idx = pd.DatetimeIndex([T0], name="timestamp")
    df = pd.DataFrame(
        {"open": [1.0], "high": [1.0], "low": [1.0], "close": [1.0], "volume": [None]}, index=idx
    )
    assert normalize_ohlc(df)["volume"].iloc[0] == 0.0


def test_ticker_mapping():
    assert _to_hl_ticker("btc") == "BTC"
    assert _to_hl_ticker("1000PEPE") == "kPEPE"


# ---------------------------------------------------------------------------
# 2. Provider
# ---------------------------------------------------------------------------

class TestHyperliquidMarketData:
    @pytest.mark.asyncio
    async def test_history_filtered_to_window(self):
        candles = [_candle(h, 100 + h, 101 + h, 99 + h, 100.5 + h) for h in range(10)]
        provider = _provider(candles=candles)

        df = await provider.get_history("BTC", T0 + timedelta(hours=2), T0 + timedelta(hours=5))

        assert len(df) == 4
        assert df.index[0] == pd.Timestamp(T0 + timedelta(hours=2))
        assert df.index[-1] == pd.Timestamp(T0 + timedelta(hours=5))

    @pytest.mark.asyncio
    async def test_long_window_is_chunked(self):
        provider = _provider()
        await provider.get_history("BTC", T0, T0 + timedelta(hours=12_000))
        assert provider._info.candles_snapshot.call_count == 3

    @pytest.mark.asyncio
    async def test_unknown_asset_is_not_found(self):
        with pytest.raises(NotFoundError):
            await _provider().get_history("NOPE", T0, T0 + timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_quote_uses_mid_price(self):
        base = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=22)
        candles = [_candle(h, 49_000, 50_500, 48_500, 50_000, v="2", base=base) for h in range(23)]
        quote = await _provider(candles=candles).get_quote("BTC")
        assert quote.price == pytest.approx(50_000.5)
        assert quote.volume_24h == pytest.approx(46)
        assert quote.price_change_24h == pytest.approx((50_000.5 - 49_000) / 49_000 * 100)

    @pytest.mark.asyncio
    async def test_market_snapshot_fetches_once(self):
        base = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) - timedelta(hours=22)
        candles = [_candle(h, 100, 101, 99, 100.5, base=base) for h in range(23)]
        provider = _provider(candles=candles)

        quote, history = await provider.get_market("BTC")

        assert provider._info.all_mids.call_count == 1
        assert provider._info.candles_snapshot.call_count == 1
        assert len(history) == 23
        assert quote.volume_24h == pytest.approx(float(history["volume"].sum()))

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_429(self):
        provider = _provider()
        error = Exception("Too many requests")
        error.status_code = 429
        provider._info.all_mids.side_effect = error
        with pytest.raises(RateLimited) as exc_info:
            await provider.get_quote("BTC")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_transport_failure_is_unavailable(self):
        provider = _provider()
        provider._info.all_mids.side_effect = ConnectionError("reset")
        with pytest.raises(UpstreamUnavailable):
            await provider.get_quote("BTC")
