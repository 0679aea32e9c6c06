from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_trade_ledger
from api.schemas.responses import TradeResponse
from core.trading.symbols import normalize_symbol
from services.trade_ledger import TradeLedger

router = APIRouter(prefix="/trades", tags=["Trades"])


@router.get("/open/{symbol}", response_model=TradeResponse)
async def get_open_trade(symbol: str, ledger: TradeLedger = Depends(get_trade_ledger)):
    """Most recent ACTIVE trade for a symbol"""
    trade = await ledger.find_open_trade(symbol)
    if trade is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active trade for {normalize_symbol(symbol)}",
        )
    return TradeResponse(status="success", data=trade)


@router.get("/{trade_id}", response_model=TradeResponse)
async def get_trade(trade_id: str, ledger: TradeLedger = Depends(get_trade_ledger)):
    trade = await ledger.get_trade(trade_id)
    if trade is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Trade {trade_id} not found")
    return TradeResponse(status="success", data=trade)
