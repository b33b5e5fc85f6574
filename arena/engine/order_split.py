"""Recursive halving of market orders the exchange rejects as too large."""

import logging
from dataclasses import dataclass, field

from arena.errors import ExchangeSizeLimitError

logger = logging.getLogger(__name__)

MAX_SPLIT_DEPTH = 4


@dataclass
class SplitOrderResult:
    order_ids: list[str]
    filled_quantity: float
    fees: float
    average_price: float | None
    split: bool = False
    split_ways: int = 1
    children: list["SplitOrderResult"] = field(default_factory=list)

    @property
    def order_id(self) -> str | None:
        return self.order_ids[0] if self.order_ids else None


def _aggregate(children: list[SplitOrderResult]) -> SplitOrderResult:
    filled = sum(c.filled_quantity for c in children)
    priced = [(c.average_price, c.filled_quantity) for c in children if c.average_price]
    priced_qty = sum(q for _, q in priced)
    average = sum(p * q for p, q in priced) / priced_qty if priced_qty > 0 else None
    return SplitOrderResult(
        order_ids=[oid for c in children for oid in c.order_ids],
        filled_quantity=filled,
        fees=sum(c.fees for c in children),
        average_price=average,
        split=True,
        split_ways=sum(c.split_ways for c in children),
        children=children,
    )


async def execute_with_split(
    adapter,
    side: str,
    coin: str,
    quantity: float,
    leverage: int,
    margin: float,
    depth: int = 0,
    max_depth: int = MAX_SPLIT_DEPTH,
) -> SplitOrderResult:
    """Open ``quantity`` at market, halving on size-limit rejections.

    Each rejection below ``max_depth`` becomes two sequential half-size child
    orders, so at most ``2**max_depth`` orders reach the exchange. Any other
    error, or a size-limit rejection at the depth cap, propagates unchanged.
    """
    try:
        fill = await adapter.open_market_position(coin, side, quantity, leverage)
    except ExchangeSizeLimitError as e:
        if depth >= max_depth:
            logger.error(f"[{coin} {side}] order of {quantity} still too large at split depth {depth}")
            raise
        half_qty = quantity / 2
        half_margin = margin / 2
        logger.warning(
            f"[{coin} {side}] order of {quantity} exceeds size limit ({e}), "
            f"splitting into 2 x {half_qty} (depth {depth + 1})"
        )
        first = await execute_with_split(adapter, side, coin, half_qty, leverage, half_margin, depth + 1, max_depth)
        second = await execute_with_split(adapter, side, coin, half_qty, leverage, half_margin, depth + 1, max_depth)
        return _aggregate([first, second])

    return SplitOrderResult(
        order_ids=[fill.order_id] if fill.order_id else [],
        filled_quantity=fill.filled_quantity,
        fees=fill.fee,
        average_price=fill.average_price,
    )
