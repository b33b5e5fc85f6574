"""Position store: the agent's durable trade ledger.

Thin repository over the ``TradeRecord`` table plus the derived aggregates the
account and performance tools report. Sessions are short-lived and synchronous,
one per call.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from arena.errors import InvalidStatusTransition, PositionConflictError
from arena.models.account_snapshot import AccountSnapshot
from arena.models.trade_record import TradeRecord
from arena.utils.constants import SHARPE_ANNUALIZATION_DAYS, STATUS_CLOSED, STATUS_OPEN

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PositionStore:
    def __init__(self, engine, agent_name: str = "default", sharpe_cutoff: datetime | None = None):
        self.engine = engine
        self.agent_name = agent_name
        self.sharpe_cutoff = as_utc(sharpe_cutoff)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, record: TradeRecord) -> TradeRecord:
        """Insert or replace the record with this position_id."""
        record.updated_at = _now()
        with Session(self.engine) as session:
            existing = session.get(TradeRecord, record.position_id)
            if existing is not None and existing.status == STATUS_CLOSED and record.status == STATUS_OPEN:
                raise InvalidStatusTransition(f"Position {record.position_id} is closed and cannot reopen")
            if record.status == STATUS_CLOSED and record.exit_time is None:
                record.exit_time = _now()
            merged = session.merge(record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise PositionConflictError(
                    f"Open {record.coin} {record.side} position already exists"
                ) from e
            session.refresh(merged)
            session.expunge(merged)
            return merged

    def update(self, position_id: str, fields: dict[str, Any]) -> TradeRecord | None:
        """Apply a partial update. Returns None when the record does not exist."""
        with Session(self.engine) as session:
            record = session.get(TradeRecord, position_id)
            if record is None:
                return None
            new_status = fields.get("status")
            if record.status == STATUS_CLOSED and new_status == STATUS_OPEN:
                raise InvalidStatusTransition(f"Position {position_id} is closed and cannot reopen")
            for key, value in fields.items():
                if not hasattr(record, key):
                    raise AttributeError(f"TradeRecord has no field {key!r}")
                setattr(record, key, value)
            if record.status == STATUS_CLOSED and record.exit_time is None:
                record.exit_time = _now()
            record.updated_at = _now()
            session.add(record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise PositionConflictError(f"Update of {position_id} conflicts with another open record") from e
            session.refresh(record)
            session.expunge(record)
            return record

    def update_status(self, position_id: str, status: str) -> TradeRecord | None:
        if status not in (STATUS_OPEN, STATUS_CLOSED):
            raise ValueError(f"Unknown status {status!r}")
        return self.update(position_id, {"status": status})

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, position_id: str) -> TradeRecord | None:
        with Session(self.engine) as session:
            return session.get(TradeRecord, position_id)

    def _list(self, *where, order_by=None, limit: int | None = None) -> list[TradeRecord]:
        with Session(self.engine) as session:
            stmt = select(TradeRecord)
            for clause in where:
                stmt = stmt.where(clause)
            stmt = stmt.order_by(order_by if order_by is not None else TradeRecord.entry_time)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(session.exec(stmt).all())

    def get_all(self) -> list[TradeRecord]:
        return self._list()

    def get_open(self) -> list[TradeRecord]:
        return self._list(TradeRecord.status == STATUS_OPEN)

    def get_closed(self) -> list[TradeRecord]:
        return self._list(TradeRecord.status == STATUS_CLOSED)

    def get_open_by(self, coin: str, side: str) -> TradeRecord | None:
        rows = self._list(
            TradeRecord.status == STATUS_OPEN,
            TradeRecord.coin == coin,
            TradeRecord.side == side,
        )
        return rows[0] if rows else None

    def get_open_for_coin(self, coin: str) -> list[TradeRecord]:
        return self._list(TradeRecord.status == STATUS_OPEN, TradeRecord.coin == coin)

    def recent_closed(self, limit: int = 20) -> list[TradeRecord]:
        return self._list(
            TradeRecord.status == STATUS_CLOSED,
            order_by=TradeRecord.exit_time.desc(),
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def _scalar(self, expr, *where) -> float:
        with Session(self.engine) as session:
            stmt = select(expr)
            for clause in where:
                stmt = stmt.where(clause)
            value = session.exec(stmt).one()
            return float(value) if value is not None else 0.0

    def total_realized_pnl(self) -> float:
        """Sum of net P&L over closed trades plus partial reductions of open ones."""
        closed = self._scalar(func.sum(TradeRecord.net_pnl), TradeRecord.status == STATUS_CLOSED)
        partial = self._scalar(func.sum(TradeRecord.realized_pnl), TradeRecord.status == STATUS_OPEN)
        return closed + partial

    def total_fees(self) -> float:
        return self._scalar(func.sum(TradeRecord.fees))

    def closed_count(self) -> int:
        return int(self._scalar(func.count(TradeRecord.position_id), TradeRecord.status == STATUS_CLOSED))

    def win_rate(self) -> float:
        """Share of closed trades with positive net P&L; 0 when nothing has closed."""
        total = self.closed_count()
        if total == 0:
            return 0.0
        wins = self._scalar(
            func.count(TradeRecord.position_id),
            TradeRecord.status == STATUS_CLOSED,
            TradeRecord.net_pnl > 0,
        )
        return wins / total

    def average_leverage(self) -> float:
        return self._scalar(func.avg(TradeRecord.leverage))

    def average_confidence(self) -> float:
        return self._scalar(func.avg(TradeRecord.confidence), TradeRecord.confidence.is_not(None))

    def biggest_win(self) -> float:
        return max(0.0, self._scalar(func.max(TradeRecord.net_pnl), TradeRecord.status == STATUS_CLOSED))

    def biggest_loss(self) -> float:
        return min(0.0, self._scalar(func.min(TradeRecord.net_pnl), TradeRecord.status == STATUS_CLOSED))

    def sharpe_ratio(self, open_positions: Iterable[Any] | None = None) -> float:
        """Annualized Sharpe approximation over per-trade returns.

        Each closed trade after the cutoff contributes ``net_pnl / margin``; each
        supplied open position (anything with ``unrealized_pnl`` and ``margin``)
        contributes its unrealized return. Population standard deviation.
        """
        cutoff = self.sharpe_cutoff or self.earliest_snapshot_time()
        returns: list[float] = []
        for record in self.get_closed():
            if record.net_pnl is None or not record.margin:
                continue
            exit_time = as_utc(record.exit_time)
            if cutoff is not None and exit_time is not None and exit_time < cutoff:
                continue
            returns.append(record.net_pnl / record.margin)

        for pos in open_positions or []:
            margin = getattr(pos, "margin", 0.0)
            if margin:
                returns.append(getattr(pos, "unrealized_pnl", 0.0) / margin)

        if len(returns) < 2:
            return 0.0
        arr = np.asarray(returns, dtype=float)
        std = float(np.std(arr))
        if std == 0 or math.isnan(std):
            return 0.0
        return float(np.mean(arr)) / std * math.sqrt(SHARPE_ANNUALIZATION_DAYS)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def save_snapshot(self, snapshot: AccountSnapshot) -> AccountSnapshot:
        snapshot.agent_name = self.agent_name
        with Session(self.engine) as session:
            session.add(snapshot)
            session.commit()
            session.refresh(snapshot)
            session.expunge(snapshot)
            return snapshot

    def get_snapshots(self, limit: int = 500) -> list[AccountSnapshot]:
        with Session(self.engine) as session:
            stmt = (
                select(AccountSnapshot)
                .where(AccountSnapshot.agent_name == self.agent_name)
                .order_by(AccountSnapshot.timestamp.desc())
                .limit(limit)
            )
            return list(session.exec(stmt).all())

    def earliest_snapshot_time(self) -> datetime | None:
        with Session(self.engine) as session:
            value = session.exec(
                select(func.min(AccountSnapshot.timestamp)).where(
                    AccountSnapshot.agent_name == self.agent_name
                )
            ).one()
        return as_utc(value)
