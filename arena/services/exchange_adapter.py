"""OKX perpetual-swap adapter built on ccxt's asyncio client.

Narrow capability interface used by the trade coordinator, reconciliation and
market data tools. Quantities are always coin units at this boundary; the
conversion to exchange contracts happens here.

Reads go through the shared retry utility. Writes are never retried: a market
order that timed out may still have filled.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import ccxt.async_support as ccxt

from arena.errors import ExchangeError, ExchangeSizeLimitError, ExchangeTransientError
from arena.utils.constants import SIDES, SIZE_LIMIT_MARKERS, coin_from_symbol, swap_inst_id, swap_symbol
from arena.utils.retry import retry_async

logger = logging.getLogger(__name__)

# OKX algo order types. stopLossPrice / takeProfitPrice orders are placed as
# "conditional"; plain triggerPrice orders as "trigger".
ALGO_ORDER_TYPES = ("conditional", "trigger")
CLOSE_FILL_LIMIT = 50


@dataclass
class Balance:
    free: float
    used: float
    total: float


@dataclass
class OrderFill:
    order_id: str | None
    filled_quantity: float  # coin units
    average_price: float | None = None
    fee: float = 0.0
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class ExchangePosition:
    coin: str
    side: str  # "long" or "short"
    quantity: float  # coin units
    entry_price: float
    mark_price: float
    leverage: int
    liquidation_price: float | None
    margin: float
    unrealized_pnl: float


@dataclass
class WorkingOrder:
    order_id: str
    coin: str
    side: str  # order side: "buy" or "sell"
    kind: str | None  # "stop_loss", "take_profit" or None when the exchange does not say
    trigger_price: float | None
    amount: float | None
    position_side: str | None = None  # posSide in hedge mode
    reduce_only: bool = False
    timestamp: int = 0


def closing_order_side(side: str) -> str:
    """Order side that reduces a position of the given side."""
    return "sell" if side == "long" else "buy"


def is_size_limit_error(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in SIZE_LIMIT_MARKERS)


def translate_error(exc: Exception, context: str) -> ExchangeError:
    """Map a ccxt exception onto the service's error taxonomy."""
    if isinstance(exc, ExchangeError):
        return exc
    if is_size_limit_error(exc):
        return ExchangeSizeLimitError(f"{context}: {exc}")
    if isinstance(exc, ccxt.NetworkError):
        return ExchangeTransientError(f"{context}: {exc}")
    return ExchangeError(f"{context}: {exc}")


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


class ExchangeAdapter:
    """Wrapper around a ccxt async exchange for hedge-mode USDT swaps."""

    def __init__(
        self,
        exchange_id: str = "okx",
        api_key: str = "",
        api_secret: str = "",
        password: str = "",
        sandbox: bool = False,
        margin_mode: str = "isolated",
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        client: Any = None,
    ):
        self.exchange_id = exchange_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.password = password
        self.sandbox = sandbox
        self.margin_mode = margin_mode
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._client = client
        self._markets_loaded = client is not None

    @classmethod
    def from_settings(cls, settings) -> "ExchangeAdapter":
        return cls(
            exchange_id=settings.exchange_id,
            api_key=settings.exchange_api_key,
            api_secret=settings.exchange_api_secret,
            password=settings.exchange_password,
            sandbox=settings.exchange_sandbox,
            margin_mode=settings.margin_mode,
            retry_attempts=settings.retry_attempts,
            retry_base_delay=settings.retry_base_delay,
        )

    async def _ensure_client(self):
        """Lazily create the ccxt client and load market metadata."""
        if self._client is None:
            exchange_class = getattr(ccxt, self.exchange_id)
            self._client = exchange_class({
                "apiKey": self.api_key,
                "secret": self.api_secret,
                "password": self.password,
                "enableRateLimit": True,
                "options": {"defaultType": "swap"},
            })
            if self.sandbox:
                self._client.set_sandbox_mode(True)
            logger.info(f"{self.exchange_id} client initialized (sandbox={self.sandbox})")

        if not self._markets_loaded:
            await self._read("load_markets", self._client.load_markets)
            self._markets_loaded = True

    async def _call(self, context: str, func, *args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            raise translate_error(e, context) from e

    async def _read(self, context: str, func, *args, **kwargs):
        return await retry_async(
            self._call,
            context,
            func,
            *args,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            label=context,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Contract sizing
    # ------------------------------------------------------------------

    def _contract_size(self, coin: str) -> float:
        try:
            market = self._client.market(swap_symbol(coin))
        except Exception:
            return 1.0
        return _float(market.get("contractSize"), 1.0) or 1.0

    def to_contracts(self, coin: str, quantity: float) -> float:
        """Coin quantity → exchange amount, rounded to the market's precision."""
        contracts = quantity / self._contract_size(coin)
        try:
            contracts = float(self._client.amount_to_precision(swap_symbol(coin), contracts))
        except Exception as e:
            raise translate_error(e, f"[{coin}] amount {quantity} below minimum size") from e
        if contracts <= 0:
            raise ExchangeError(f"[{coin}] quantity {quantity} rounds to zero contracts")
        return contracts

    def to_quantity(self, coin: str, contracts: float) -> float:
        return contracts * self._contract_size(coin)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_price(self, coin: str) -> float:
        await self._ensure_client()
        ticker = await self._read(f"[{coin}] fetch_ticker", self._client.fetch_ticker, swap_symbol(coin))
        price = _float(ticker.get("last") or ticker.get("close"))
        if price <= 0:
            raise ExchangeError(f"[{coin}] no last price in ticker")
        return price

    async def get_ohlcv(self, coin: str, timeframe: str = "3m", limit: int = 100) -> list[list[float]]:
        await self._ensure_client()
        return await self._read(
            f"[{coin}] fetch_ohlcv", self._client.fetch_ohlcv, swap_symbol(coin), timeframe, limit=limit
        )

    async def get_balance(self) -> Balance:
        await self._ensure_client()
        resp = await self._read("fetch_balance", self._client.fetch_balance)
        usdt = resp.get("USDT") or {}
        return Balance(
            free=_float(usdt.get("free")),
            used=_float(usdt.get("used")),
            total=_float(usdt.get("total")),
        )

    async def get_positions(self) -> list[ExchangePosition]:
        """Open swap positions with a non-zero size."""
        await self._ensure_client()
        raw_positions = await self._read("fetch_positions", self._client.fetch_positions)
        positions = []
        for pos in raw_positions:
            contracts = _float(pos.get("contracts"))
            if contracts <= 0:
                continue
            coin = coin_from_symbol(pos.get("symbol", ""))
            side = pos.get("side") or (pos.get("info") or {}).get("posSide")
            if side not in SIDES:
                logger.warning(f"[{coin}] skipping position with unknown side {side!r}")
                continue
            contract_size = _float(pos.get("contractSize"), 0.0) or self._contract_size(coin)
            positions.append(ExchangePosition(
                coin=coin,
                side=side,
                quantity=contracts * contract_size,
                entry_price=_float(pos.get("entryPrice")),
                mark_price=_float(pos.get("markPrice")),
                leverage=int(_float(pos.get("leverage"), 1.0)) or 1,
                liquidation_price=_float(pos.get("liquidationPrice")) or None,
                margin=_float(pos.get("initialMargin") or pos.get("collateral")),
                unrealized_pnl=_float(pos.get("unrealizedPnl")),
            ))
        return positions

    async def get_open_orders(self, coin: str | None = None) -> list[WorkingOrder]:
        """Working orders: regular resting orders plus every kind of algo order."""
        await self._ensure_client()
        symbol = swap_symbol(coin) if coin else None
        raw_orders = list(await self._read("fetch_open_orders", self._client.fetch_open_orders, symbol))
        for ord_type in ALGO_ORDER_TYPES:
            raw_orders += await self._read(
                f"fetch_open_orders({ord_type})",
                self._client.fetch_open_orders,
                symbol,
                params={"ordType": ord_type},
            )
        seen: set[str] = set()
        orders = []
        for raw in raw_orders:
            order = self._to_working_order(raw)
            if order is None or order.order_id in seen:
                continue
            seen.add(order.order_id)
            orders.append(order)
        return orders

    def _to_working_order(self, raw: dict) -> WorkingOrder | None:
        order_id = raw.get("id")
        if not order_id:
            return None
        info = raw.get("info") or {}
        coin = coin_from_symbol(raw.get("symbol") or info.get("instId", ""))
        sl = raw.get("stopLossPrice") or info.get("slTriggerPx")
        tp = raw.get("takeProfitPrice") or info.get("tpTriggerPx")
        if sl:
            kind, trigger = "stop_loss", _float(sl)
        elif tp:
            kind, trigger = "take_profit", _float(tp)
        else:
            kind, trigger = None, _float(raw.get("triggerPrice") or raw.get("stopPrice")) or None
        amount = raw.get("amount")
        return WorkingOrder(
            order_id=str(order_id),
            coin=coin,
            side=raw.get("side") or "",
            kind=kind,
            trigger_price=trigger,
            amount=self.to_quantity(coin, _float(amount)) if amount is not None else None,
            position_side=info.get("posSide") or None,
            reduce_only=bool(raw.get("reduceOnly") or info.get("reduceOnly") == "true"),
            timestamp=int(raw.get("timestamp") or 0),
        )

    async def get_funding_rate(self, coin: str) -> float:
        await self._ensure_client()
        resp = await self._read(f"[{coin}] fetch_funding_rate", self._client.fetch_funding_rate, swap_symbol(coin))
        return _float(resp.get("fundingRate"))

    async def get_open_interest(self, coin: str) -> float:
        """Open interest in coin units."""
        await self._ensure_client()
        resp = await self._read(f"[{coin}] fetch_open_interest", self._client.fetch_open_interest, swap_symbol(coin))
        info = resp.get("info") or {}
        if info.get("oiCcy") is not None:
            return _float(info["oiCcy"])
        return _float(resp.get("openInterestAmount"))

    async def quantity_for_margin(self, coin: str, margin: float, leverage: int) -> tuple[float, float]:
        """Fresh price and the coin quantity that ``margin`` buys at ``leverage``."""
        price = await self.get_price(coin)
        return price, (margin * leverage) / price

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_leverage(self, coin: str, leverage: int, side: str | None = None):
        """Set leverage per position side; both sides when no side is given."""
        await self._ensure_client()
        for pos_side in ([side] if side else list(SIDES)):
            await self._call(
                f"[{coin} {pos_side}] set_leverage",
                self._client.set_leverage,
                leverage,
                swap_symbol(coin),
                params={"mgnMode": self.margin_mode, "posSide": pos_side},
            )
        logger.info(f"[{coin}] leverage set to {leverage}x for {side or 'both sides'}")

    async def _market_order(self, coin: str, order_side: str, quantity: float, params: dict) -> OrderFill:
        contracts = self.to_contracts(coin, quantity)
        order = await self._call(
            f"[{coin}] create_order {order_side}",
            self._client.create_order,
            swap_symbol(coin),
            "market",
            order_side,
            contracts,
            None,
            params,
        )
        return await self._fill_from_order(coin, order, quantity)

    async def _fill_from_order(self, coin: str, order: dict, requested: float) -> OrderFill:
        """Normalize an order response, fetching the order once when the ack has no fill details."""
        order_id = order.get("id")
        if order_id and order.get("average") is None:
            try:
                order = await self._read(
                    f"[{coin}] fetch_order", self._client.fetch_order, order_id, swap_symbol(coin)
                ) or order
            except ExchangeError as e:
                logger.warning(f"[{coin}] could not fetch fill for order {order_id}: {e}")
        filled = order.get("filled")
        fee = order.get("fee") or {}
        return OrderFill(
            order_id=str(order_id) if order_id else None,
            filled_quantity=self.to_quantity(coin, _float(filled)) if filled else requested,
            average_price=_float(order.get("average")) or None,
            fee=abs(_float(fee.get("cost"))),
            raw=order,
        )

    async def open_market_position(self, coin: str, side: str, quantity: float, leverage: int) -> OrderFill:
        """Set the side's leverage, then open with a market order."""
        await self._ensure_client()
        await self.set_leverage(coin, leverage, side)
        order_side = "buy" if side == "long" else "sell"
        fill = await self._market_order(
            coin, order_side, quantity, {"posSide": side, "tdMode": self.margin_mode}
        )
        logger.info(
            f"[{coin} {side}] opened {fill.filled_quantity} @ {fill.average_price} (order {fill.order_id})"
        )
        return fill

    async def reduce_position(self, coin: str, side: str, quantity: float) -> OrderFill:
        """Partial close with a reduce-only market order."""
        await self._ensure_client()
        fill = await self._market_order(
            coin,
            closing_order_side(side),
            quantity,
            {"posSide": side, "tdMode": self.margin_mode, "reduceOnly": True},
        )
        logger.info(f"[{coin} {side}] reduced by {fill.filled_quantity} (order {fill.order_id})")
        return fill

    async def close_position(self, coin: str, side: str) -> OrderFill:
        """Close the whole side at market through OKX's close-position endpoint.

        The endpoint acknowledges without fill details, so the close is tagged
        with a client order id and its trades are read back for the average
        price and fee. When the trades are not visible yet, the exit price is a
        fresh ticker read and the fee is reported as 0.
        """
        await self._ensure_client()
        client_order_id = f"arena{uuid.uuid4().hex[:16]}"
        resp = await self._call(
            f"[{coin} {side}] close_position",
            self._client.private_post_trade_close_position,
            {
                "instId": swap_inst_id(coin),
                "mgnMode": self.margin_mode,
                "posSide": side,
                "clOrdId": client_order_id,
            },
        )
        data = (resp.get("data") or [{}])[0] if isinstance(resp, dict) else {}
        order_id = data.get("clOrdId") or client_order_id

        fill = await self._closing_fill(coin, order_id)
        if fill is None:
            price = await self.get_price(coin)
            logger.warning(f"[{coin} {side}] no trades found for close {order_id}; closing fee not counted")
            fill = OrderFill(
                order_id=order_id,
                filled_quantity=0.0,
                average_price=price,
                raw=resp if isinstance(resp, dict) else {},
            )
        logger.info(f"[{coin} {side}] position closed at ~{fill.average_price} (fee {fill.fee})")
        return fill

    async def _closing_fill(self, coin: str, client_order_id: str) -> OrderFill | None:
        """Volume-weighted price and total fee of the trades carrying ``client_order_id``."""
        try:
            trades = await self._read(
                f"[{coin}] fetch_my_trades",
                self._client.fetch_my_trades,
                swap_symbol(coin),
                None,
                CLOSE_FILL_LIMIT,
            )
        except ExchangeError as e:
            logger.warning(f"[{coin}] could not read trades for close {client_order_id}: {e}")
            return None
        fills = [t for t in trades or [] if (t.get("info") or {}).get("clOrdId") == client_order_id]
        contracts = sum(_float(t.get("amount")) for t in fills)
        if contracts <= 0:
            return None
        average = sum(_float(t.get("price")) * _float(t.get("amount")) for t in fills) / contracts
        return OrderFill(
            order_id=client_order_id,
            filled_quantity=self.to_quantity(coin, contracts),
            average_price=average,
            fee=sum(abs(_float((t.get("fee") or {}).get("cost"))) for t in fills),
            raw={"trades": fills},
        )

    async def _conditional_order(self, coin: str, side: str, quantity: float, price_param: str, price: float) -> str:
        contracts = self.to_contracts(coin, quantity)
        order = await self._call(
            f"[{coin} {side}] {price_param}",
            self._client.create_order,
            swap_symbol(coin),
            "market",
            closing_order_side(side),
            contracts,
            None,
            {price_param: price, "posSide": side, "tdMode": self.margin_mode, "reduceOnly": True},
        )
        order_id = str(order.get("id") or "")
        if not order_id:
            raise ExchangeError(f"[{coin} {side}] {price_param} order returned no id")
        return order_id

    async def set_stop_loss(self, coin: str, side: str, quantity: float, price: float) -> str:
        await self._ensure_client()
        order_id = await self._conditional_order(coin, side, quantity, "stopLossPrice", price)
        logger.info(f"[{coin} {side}] stop-loss {order_id} at {price} for {quantity}")
        return order_id

    async def set_take_profit(self, coin: str, side: str, quantity: float, price: float) -> str:
        await self._ensure_client()
        order_id = await self._conditional_order(coin, side, quantity, "takeProfitPrice", price)
        logger.info(f"[{coin} {side}] take-profit {order_id} at {price} for {quantity}")
        return order_id

    async def cancel_order(self, order_id: str, coin: str, trigger: bool = True) -> bool:
        """Cancel an order. Returns False on failure; it may already have triggered."""
        await self._ensure_client()
        params = {"trigger": True} if trigger else {}
        try:
            await self._call(
                f"[{coin}] cancel_order {order_id}",
                self._client.cancel_order,
                order_id,
                swap_symbol(coin),
                params=params,
            )
            logger.info(f"[{coin}] cancelled order {order_id}")
            return True
        except ExchangeError as e:
            logger.error(f"Cancel failed: {e}")
            return False

    async def cancel_conditional_orders(self, coin: str, side: str | None = None) -> int:
        """Cancel stop-loss / take-profit orders that protect the coin's positions.

        With a side, only orders that would close that side are cancelled.
        """
        orders = await self.get_open_orders(coin)
        cancelled = 0
        for order in orders:
            if order.kind is None and not order.reduce_only:
                continue
            if side is not None:
                if order.position_side and order.position_side != side:
                    continue
                if order.side and order.side != closing_order_side(side):
                    continue
            if await self.cancel_order(order.order_id, coin, trigger=order.kind is not None):
                cancelled += 1
        if cancelled:
            logger.info(f"[{coin} {side or 'both'}] cancelled {cancelled} conditional orders")
        return cancelled

    async def close(self):
        """Close the underlying HTTP session."""
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as e:
                logger.debug(f"Exchange client close failed: {e}")
        self._client = None
        self._markets_loaded = False
