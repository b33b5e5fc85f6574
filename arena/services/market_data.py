"""Market data and technical indicators for the get_market_data tool.

Candles come from the exchange adapter; indicators are computed on the close
series with pandas.
"""

import logging
import math
from datetime import datetime, timezone

import pandas as pd

from arena.errors import ArenaError
from arena.utils.constants import EMA_PERIODS, MACD_FAST, MACD_SIGNAL, MACD_SLOW, RSI_PERIODS, SERIES_TAIL

logger = logging.getLogger(__name__)

DEFAULT_INDICATORS = ("ema20", "ema50", "macd", "rsi7", "rsi14")
CANDLE_LIMIT = 100


def ohlcv_to_closes(ohlcv: list[list[float]]) -> pd.Series:
    """Close price series with a UTC datetime index from ccxt OHLCV rows."""
    if not ohlcv:
        return pd.Series(dtype=float)
    df = pd.DataFrame(ohlcv, columns=["time", "open", "high", "low", "close", "volume"])
    df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df.set_index("time")["close"].astype(float)


def ema(closes: pd.Series, period: int) -> pd.Series:
    return closes.ewm(span=period, adjust=False).mean()


def rsi(closes: pd.Series, period: int = 14) -> pd.Series:
    """Wilder RSI. Values before ``period`` candles are NaN."""
    delta = closes.diff()
    gains = delta.clip(lower=0.0)
    losses = -delta.clip(upper=0.0)
    avg_gain = gains.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = losses.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / avg_loss
    out = 100 - 100 / (1 + rs)
    # No losses in the window → RSI pegs at 100
    return out.where(avg_loss != 0, 100.0).where(avg_gain.notna())


def macd(closes: pd.Series, fast: int = MACD_FAST, slow: int = MACD_SLOW, signal: int = MACD_SIGNAL) -> pd.DataFrame:
    line = ema(closes, fast) - ema(closes, slow)
    signal_line = line.ewm(span=signal, adjust=False).mean()
    return pd.DataFrame({"macd": line, "signal": signal_line, "histogram": line - signal_line})


def _tail(series: pd.Series, n: int = SERIES_TAIL) -> list[float]:
    return [round(float(v), 6) for v in series.dropna().tail(n)]


def _latest(series: pd.Series) -> float | None:
    clean = series.dropna()
    if clean.empty:
        return None
    value = float(clean.iloc[-1])
    return None if math.isnan(value) else round(value, 6)


def compute_indicators(closes: pd.Series, indicators=DEFAULT_INDICATORS) -> dict:
    data: dict = {
        "current_price": _latest(closes),
        "price_series": _tail(closes),
    }
    for period in EMA_PERIODS:
        key = f"ema{period}"
        if key in indicators:
            series = ema(closes, period)
            data[f"current_{key}"] = _latest(series)
            data[f"{key}_series"] = _tail(series)
    for period in RSI_PERIODS:
        key = f"rsi{period}"
        if key in indicators or (period == 14 and "rsi" in indicators):
            series = rsi(closes, period)
            data[f"current_{key}"] = _latest(series)
            data[f"{key}_series"] = _tail(series)
    if "macd" in indicators:
        frame = macd(closes)
        data["current_macd"] = _latest(frame["macd"])
        data["current_macd_signal"] = _latest(frame["signal"])
        data["macd_series"] = _tail(frame["macd"])
    return data


async def get_market_data(
    adapter,
    coins: list[str],
    timeframe: str = "3m",
    indicators=DEFAULT_INDICATORS,
    include_funding: bool = True,
    include_open_interest: bool = True,
) -> dict:
    """Indicators per coin. A coin whose candles cannot be fetched is left out."""
    result: dict[str, dict] = {}
    for coin in coins:
        coin = coin.upper()
        try:
            closes = ohlcv_to_closes(await adapter.get_ohlcv(coin, timeframe, CANDLE_LIMIT))
        except ArenaError as e:
            logger.warning(f"[{coin}] market data unavailable: {e}")
            continue
        if closes.empty:
            logger.warning(f"[{coin}] no candles returned for {timeframe}")
            continue

        data = compute_indicators(closes, indicators)
        if include_funding:
            try:
                data["funding_rate"] = await adapter.get_funding_rate(coin)
            except ArenaError as e:
                logger.info(f"[{coin}] funding rate unavailable: {e}")
        if include_open_interest:
            try:
                data["open_interest"] = await adapter.get_open_interest(coin)
            except ArenaError as e:
                logger.info(f"[{coin}] open interest unavailable: {e}")
        result[coin] = data

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "timeframe": timeframe,
        "coins": result,
    }
