"""
market_ux.py - API Endpoints for the Team Shares Market

FastAPI endpoints for:
- Quotes and trade execution against the bonding curve
- Market open / locked state per team
- Team listings and snapshots
- Wallet deposits, withdrawals and portfolios
- Manually triggering a settlement sync

Callers pass the acting user id explicitly; sessions live elsewhere.
"""

from typing import Optional, Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from teamshares.errors import (
    InvalidQuantity, LedgerBusy, MarketClosed, TeamSharesError, UnknownTeam, UnknownUser,
)

router = APIRouter(prefix="/api/market", tags=["market"])

# ==========================
# REQUEST MODELS
# ==========================

class TradeRequest(BaseModel):
    user_id: int
    team_id: int
    side: str  # "BUY" or "SELL"
    qty: Union[int, float, str]  # validated by _quantity


class WalletRequest(BaseModel):
    user_id: int
    amount: float


class BankFundingRequest(BaseModel):
    amount: float


# ==========================
# HELPERS
# ==========================

def _services(request: Request):
    return request.app.state.market


def _raise(e: TeamSharesError):
    if isinstance(e, (UnknownTeam, UnknownUser)):
        status = 404
    elif isinstance(e, (MarketClosed, LedgerBusy)):
        status = 409
    else:
        status = 400
    raise HTTPException(status_code=status, detail=e.to_dict())


def _quantity(value) -> int:
    """Whole-number quantity from a JSON body or a query string."""
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    elif isinstance(value, int) and not isinstance(value, bool):
        return value
    raise InvalidQuantity(f"Quantity must be a positive whole number, got {value!r}")


# ==========================
# TRADING ENDPOINTS
# ==========================

@router.get("/quote/{team_id}")
def api_quote(team_id: int, side: str, qty: str, request: Request):
    """Price a trade without executing it."""
    try:
        quote = _services(request).ledger.quote(team_id, side, _quantity(qty))
    except TeamSharesError as e:
        _raise(e)
    return {"team_id": team_id, **quote.to_dict()}


@router.post("/trade")
def api_trade(body: TradeRequest, request: Request):
    """
    Execute a trade.

    Example request:
    {
        "user_id": 1,
        "team_id": 7,
        "side": "BUY",
        "qty": 10
    }
    """
    try:
        result = _services(request).ledger.execute_trade(body.user_id, body.team_id, body.side, _quantity(body.qty))
    except TeamSharesError as e:
        _raise(e)
    return {"success": True, **result.to_dict()}


@router.get("/state/{team_id}")
def api_market_state(team_id: int, request: Request):
    try:
        decision = _services(request).ledger.market_state(team_id)
    except TeamSharesError as e:
        _raise(e)
    return {"team_id": team_id, **decision.to_dict()}


# ==========================
# TEAM ENDPOINTS
# ==========================

@router.get("/teams")
def api_list_teams(request: Request, league: Optional[str] = None):
    ledger = _services(request).ledger
    return {"teams": [ledger.team_snapshot(t.id) for t in ledger.list_teams(league)]}


@router.get("/teams/{team_id}")
def api_team(team_id: int, request: Request):
    try:
        return _services(request).ledger.team_snapshot(team_id)
    except TeamSharesError as e:
        _raise(e)


@router.post("/teams/{team_id}/bank")
def api_fund_bank(team_id: int, body: BankFundingRequest, request: Request):
    try:
        bank = _services(request).ledger.fund_dividend_bank(team_id, body.amount)
    except TeamSharesError as e:
        _raise(e)
    return {"success": True, "team_id": team_id, "dividend_bank": bank}


@router.get("/teams/{team_id}/transactions")
def api_team_transactions(team_id: int, request: Request, limit: int = 50):
    txs = _services(request).ledger.recent_transactions(team_id, limit=min(max(limit, 1), 500))
    return {
        "transactions": [
            {
                "id": tx.id,
                "user_id": tx.user_id,
                "side": tx.side,
                "shares_amount": tx.shares_amount,
                "usd_amount": tx.usd_amount,
                "avg_share_price": tx.avg_share_price,
                "created_at": tx.created_at.isoformat() if tx.created_at else None,
            }
            for tx in txs
        ]
    }


# ==========================
# WALLET ENDPOINTS
# ==========================

@router.post("/wallet/deposit")
def api_deposit(body: WalletRequest, request: Request):
    try:
        balance = _services(request).ledger.credit(body.user_id, body.amount)
    except TeamSharesError as e:
        _raise(e)
    return {"success": True, "usd_balance": balance}


@router.post("/wallet/withdraw")
def api_withdraw(body: WalletRequest, request: Request):
    try:
        balance = _services(request).ledger.debit(body.user_id, body.amount)
    except TeamSharesError as e:
        _raise(e)
    return {"success": True, "usd_balance": balance}


@router.get("/portfolio/{user_id}")
def api_portfolio(user_id: int, request: Request):
    try:
        return _services(request).ledger.portfolio(user_id)
    except TeamSharesError as e:
        _raise(e)


# ==========================
# SETTLEMENT ENDPOINTS
# ==========================

@router.post("/sync/{league}")
def api_run_sync(league: str, request: Request):
    """Run one settlement sync now. Failures are reported, never raised."""
    services = _services(request)
    if league.upper() not in services.config.leagues:
        raise HTTPException(status_code=404, detail={"kind": "UnknownLeague", "error": f"Unknown league {league}"})
    return services.sync.run(league).to_dict()


__all__ = ['router', 'TradeRequest', 'WalletRequest', 'BankFundingRequest']
