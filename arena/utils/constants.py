"""Shared constants and defaults."""

import re

SIDES = ("long", "short")

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"

# Settlement currency for linear perpetual swaps
QUOTE = "USDT"

# Simplified liquidation estimate: price * (1 -/+ LIQUIDATION_BUFFER / leverage)
LIQUIDATION_BUFFER = 0.9

# Returns are annualized as if one trade per day
SHARPE_ANNUALIZATION_DAYS = 365

# OKX rejects oversized market orders with these codes / messages
SIZE_LIMIT_MARKERS = (
    "51201",
    "51202",
    "exceeds the maximum amount",
    "market order amount exceeds",
    "can't exceed 1000000usdt",
)

# Indicator windows for the market data tool
EMA_PERIODS = (20, 50)
RSI_PERIODS = (7, 14)
MACD_FAST, MACD_SLOW, MACD_SIGNAL = 12, 26, 9
SERIES_TAIL = 20

VALID_TIMEFRAMES = ["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "1d"]


def swap_symbol(coin: str) -> str:
    """Unified ccxt symbol of the coin's USDT-margined perpetual."""
    return f"{coin.upper()}/{QUOTE}:{QUOTE}"


def swap_inst_id(coin: str) -> str:
    """Native OKX instrument id of the coin's USDT-margined perpetual."""
    return f"{coin.upper()}-{QUOTE}-SWAP"


def coin_from_symbol(symbol: str) -> str:
    return symbol.split("/")[0].split("-")[0].upper()


def trade_table_name(agent_name: str) -> str:
    """Ledger table for one agent namespace, e.g. ``trade_record_gpt_5``."""
    safe = re.sub(r"[^a-z0-9_]", "_", agent_name.lower()).strip("_") or "default"
    return f"trade_record_{safe}"
