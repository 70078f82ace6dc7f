"""Technical indicators computed from stored daily bars."""

from __future__ import annotations

import math
from collections.abc import Sequence

import pandas as pd

from quoteflow.core.models import Bar


def closes_from_bars(bars: Sequence[Bar]) -> pd.Series:
    """Close prices indexed by bar date; bars without a close are dropped."""

    data = {bar.date: bar.close for bar in bars if bar.close is not None}
    series = pd.Series(data, dtype="float64")
    return series.sort_index()


def sma(closes: pd.Series, period: int) -> pd.Series:
    return closes.rolling(window=period, min_periods=period).mean()


def ema(closes: pd.Series, period: int) -> pd.Series:
    """Exponential moving average seeded once ``period`` values are available."""

    return closes.ewm(span=period, adjust=False, min_periods=period).mean()


def rsi(closes: pd.Series, period: int = 14) -> pd.Series:
    """Relative strength index with Wilder smoothing."""

    delta = closes.diff()
    gains = delta.clip(lower=0.0)
    losses = -delta.clip(upper=0.0)
    avg_gain = gains.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = losses.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / avg_loss
    result = 100 - 100 / (1 + rs)
    # No losses in the window means maximal strength.
    result = result.where(avg_loss != 0, 100.0)
    result = result.mask((avg_gain == 0) & (avg_loss == 0), 50.0)
    return result.where(avg_gain.notna())


def macd(closes: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD line, signal line (EMA of the MACD line) and histogram."""

    line = ema(closes, fast) - ema(closes, slow)
    signal_line = line.ewm(span=signal, adjust=False, min_periods=signal).mean()
    return pd.DataFrame({"macd": line, "signal": signal_line, "histogram": line - signal_line})


def _latest(series: pd.Series) -> float | None:
    if series.empty:
        return None
    value = series.iloc[-1]
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return float(value)


def indicator_frame(
    bars: Sequence[Bar],
    *,
    sma_period: int = 20,
    ema_period: int = 20,
    rsi_period: int = 14,
    macd_fast: int = 12,
    macd_slow: int = 26,
    macd_signal: int = 9,
) -> pd.DataFrame:
    """Per-date frame with the close and every indicator column."""

    closes = closes_from_bars(bars)
    frame = pd.DataFrame({"close": closes})
    frame["sma"] = sma(closes, sma_period)
    frame["ema"] = ema(closes, ema_period)
    frame["rsi"] = rsi(closes, rsi_period)
    frame = frame.join(macd(closes, macd_fast, macd_slow, macd_signal))
    return frame


def latest_indicators(frame: pd.DataFrame) -> dict[str, float | None]:
    return {column: _latest(frame[column]) for column in frame.columns}
