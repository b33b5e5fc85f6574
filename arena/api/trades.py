"""Trade ledger API."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from arena.database import get_session
from arena.models.trade_record import TradeRecord

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("")
def list_trades(
    status: str | None = None,
    coin: str | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    stmt = select(TradeRecord).order_by(TradeRecord.entry_time.desc())
    if status is not None:
        stmt = stmt.where(TradeRecord.status == status)
    if coin is not None:
        stmt = stmt.where(TradeRecord.coin == coin.upper())
    stmt = stmt.offset(offset).limit(limit)
    return session.exec(stmt).all()


@router.get("/{position_id}")
def get_trade(position_id: str, session: Session = Depends(get_session)):
    trade = session.get(TradeRecord, position_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
