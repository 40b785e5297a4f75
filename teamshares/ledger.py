"""
ledger.py

Ledger for the team shares market.
Handles:
- Trade execution against the bonding curve (all-or-nothing)
- Per-team serialization of supply and dividend bank updates
- Win payouts from the dividend bank, fenced by processed games
- Wallet credits and debits
- Team record and schedule updates coming from the settlement job
- Read models: quotes, team snapshots, portfolios, audit log

Concurrency: every mutation runs inside one database transaction that
selects the rows it changes FOR UPDATE (honored by PostgreSQL) and writes
them back with an optimistic version check (works everywhere, including
SQLite). A lost race rolls back and runs the whole transaction again.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from teamshares.config import MarketConfig, STARTING_BALANCE
from teamshares.database import utcnow
from teamshares.errors import (
    InsufficientFunds, InsufficientShares, InvalidAmount, InvalidQuantity,
    LedgerBusy, MarketClosed, TeamSharesError, UnknownTeam, UnknownUser,
)
from teamshares.market_gate import GateDecision, MarketGate
from teamshares.models import (
    DividendPayout, Holding, ProcessedGame, Team, TradeSide, Transaction, User,
)
from teamshares.pricing import PricingEngine, Quote, normalize_side

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


def _positive_amount(amount) -> Decimal:
    try:
        value = _money(amount)
    except Exception:
        raise InvalidAmount(f"Invalid amount {amount!r}")
    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount {amount!r}")
    value = value.quantize(CENT, rounding=ROUND_DOWN)
    if value <= 0:
        raise InvalidAmount(f"Amount must be at least one cent, got {amount!r}")
    return value


# ==========================
# RESULTS
# ==========================
@dataclass(frozen=True)
class TradeResult:
    transaction_id: int
    user_id: int
    team_id: int
    side: str
    qty: int
    total: Decimal
    avg_price: Decimal
    new_spot_price: Decimal
    shares_outstanding: int
    usd_balance: float
    shares_owned: int

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "team_id": self.team_id,
            "side": self.side,
            "qty": self.qty,
            "total": float(self.total),
            "avg_price": float(self.avg_price),
            "new_spot_price": float(self.new_spot_price),
            "shares_outstanding": self.shares_outstanding,
            "usd_balance": self.usd_balance,
            "shares_owned": self.shares_owned,
        }


@dataclass(frozen=True)
class PayoutSummary:
    team_id: int
    game_id: Optional[str]
    bank_before: Decimal
    distributed: Decimal
    bank_after: Decimal
    holders_paid: int

    def to_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "game_id": self.game_id,
            "bank_before": float(self.bank_before),
            "distributed": float(self.distributed),
            "bank_after": float(self.bank_after),
            "holders_paid": self.holders_paid,
        }


# ==========================
# LEDGER
# ==========================
class LedgerStore:
    """Owns teams, users, holdings and the trade log."""

    def __init__(self, session_factory, config: MarketConfig,
                 pricing: Optional[PricingEngine] = None, gate: Optional[MarketGate] = None):
        self.session_factory = session_factory
        self.config = config
        self.pricing = pricing or PricingEngine(config.curve_base_price, config.curve_slope)
        self.gate = gate or MarketGate(session_factory, config)
        fraction = Decimal(config.payout_fraction)
        if fraction <= 0 or fraction > 1:
            raise ValueError(f"payout_fraction must be in (0, 1], got {fraction}")
        self.payout_fraction = fraction

    # --------------------------
    # Transaction plumbing
    # --------------------------
    def run_in_transaction(self, fn, label: str = "write", retry_integrity: bool = False):
        """
        Run fn(db) in a fresh session and commit.

        Version conflicts and SQLite lock timeouts roll back and retry the
        whole function. Domain errors roll back and propagate unchanged.
        """
        attempts = max(1, self.config.trade_retry_attempts)
        for attempt in range(1, attempts + 1):
            db = self.session_factory()
            try:
                result = fn(db)
                db.commit()
                return result
            except TeamSharesError:
                db.rollback()
                raise
            except StaleDataError:
                db.rollback()
                print(f"[Ledger] {label}: concurrent update, retrying ({attempt}/{attempts})")
            except IntegrityError:
                db.rollback()
                if not retry_integrity:
                    raise
                print(f"[Ledger] {label}: duplicate insert, retrying ({attempt}/{attempts})")
            except OperationalError as e:
                db.rollback()
                if "locked" not in str(e).lower():
                    raise
                print(f"[Ledger] {label}: database locked, retrying ({attempt}/{attempts})")
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
            time.sleep(0.01 * attempt)
        raise LedgerBusy(f"{label} could not be applied after {attempts} attempts")

    def _lock_team(self, db, team_id: int) -> Team:
        team = db.query(Team).filter(Team.id == team_id).with_for_update().first()
        if not team:
            raise UnknownTeam(f"Team {team_id} not found")
        return team

    def _lock_user(self, db, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UnknownUser(f"User {user_id} not found")
        return user

    def _lock_holding(self, db, user_id: int, team_id: int) -> Optional[Holding]:
        return db.query(Holding).filter(
            Holding.user_id == user_id,
            Holding.team_id == team_id,
        ).with_for_update().first()

    # --------------------------
    # Reads
    # --------------------------
    def get_team(self, team_id: int) -> Team:
        db = self.session_factory()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                raise UnknownTeam(f"Team {team_id} not found")
            return team
        finally:
            db.close()

    def find_team(self, league: str, ticker: str) -> Optional[Team]:
        db = self.session_factory()
        try:
            return db.query(Team).filter(
                Team.league == league.upper(),
                Team.ticker == ticker.upper(),
            ).first()
        finally:
            db.close()

    def list_teams(self, league: Optional[str] = None) -> List[Team]:
        db = self.session_factory()
        try:
            q = db.query(Team)
            if league:
                q = q.filter(Team.league == league.upper())
            return q.order_by(Team.league, Team.ticker).all()
        finally:
            db.close()

    def get_user(self, user_id: int) -> User:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UnknownUser(f"User {user_id} not found")
            return user
        finally:
            db.close()

    def get_holding(self, user_id: int, team_id: int) -> int:
        db = self.session_factory()
        try:
            holding = db.query(Holding).filter(
                Holding.user_id == user_id,
                Holding.team_id == team_id,
            ).first()
            return holding.shares_owned if holding else 0
        finally:
            db.close()

    def is_game_processed(self, game_id: str) -> bool:
        db = self.session_factory()
        try:
            return db.query(ProcessedGame).filter(ProcessedGame.game_id == str(game_id)).first() is not None
        finally:
            db.close()

    def spot_price(self, team: Team) -> Decimal:
        return self.pricing.spot_price(team.shares_outstanding)

    def quote(self, team_id: int, side: str, qty: int) -> Quote:
        """Read-only quote against the team's current supply."""
        team = self.get_team(team_id)
        return self.pricing.quote(team.shares_outstanding, side, qty)

    def market_state(self, team_id: int, now: Optional[datetime] = None) -> GateDecision:
        return self.gate.state(team_id, now)

    def team_snapshot(self, team_id: int) -> dict:
        team = self.get_team(team_id)
        return {
            "id": team.id,
            "ticker": team.ticker,
            "name": team.name,
            "league": team.league,
            "spot_price": float(self.spot_price(team)),
            "shares_outstanding": team.shares_outstanding,
            "dividend_bank": team.dividend_bank,
            "yield_per_share": float(self.pricing.yield_per_share(
                team.dividend_bank, team.shares_outstanding, self.payout_fraction)),
            "wins": team.wins,
            "losses": team.losses,
            "ties": team.ties,
            "next_opponent": team.next_opponent,
            "next_game_at": team.next_game_at.isoformat() if team.next_game_at else None,
        }

    def portfolio(self, user_id: int) -> dict:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UnknownUser(f"User {user_id} not found")
            rows = db.query(Holding, Team).join(Team, Team.id == Holding.team_id).filter(
                Holding.user_id == user_id
            ).order_by(Team.league, Team.ticker).all()
            positions = []
            for holding, team in rows:
                spot = self.spot_price(team)
                positions.append({
                    "team_id": team.id,
                    "ticker": team.ticker,
                    "league": team.league,
                    "shares_owned": holding.shares_owned,
                    "spot_price": float(spot),
                    "market_value": float(spot * holding.shares_owned),
                })
            return {"user_id": user.id, "usd_balance": user.usd_balance, "positions": positions}
        finally:
            db.close()

    def recent_transactions(self, team_id: Optional[int] = None, limit: int = 50) -> List[Transaction]:
        db = self.session_factory()
        try:
            q = db.query(Transaction)
            if team_id is not None:
                q = q.filter(Transaction.team_id == team_id)
            return q.order_by(Transaction.id.desc()).limit(limit).all()
        finally:
            db.close()

    # --------------------------
    # Accounts and listings
    # --------------------------
    def create_user(self, username: str, usd_balance: float = STARTING_BALANCE) -> User:
        if usd_balance < 0:
            raise InvalidAmount("Starting balance cannot be negative")

        def _create(db):
            user = User(username=username, usd_balance=float(usd_balance))
            db.add(user)
            db.flush()
            return user

        user = self.run_in_transaction(_create, "create_user")
        print(f"[Ledger] Created user {user.id}: {username}")
        return user

    def create_team(self, ticker: str, league: str, name: Optional[str] = None) -> Team:
        def _create(db):
            team = Team(ticker=ticker.upper(), league=league.upper(), name=name or ticker.upper())
            db.add(team)
            db.flush()
            return team

        team = self.run_in_transaction(_create, "create_team")
        print(f"[Ledger] Listed {team.league} {team.ticker} (team {team.id})")
        return team

    def credit(self, user_id: int, amount) -> float:
        """Deposit cash into a user's balance. Returns the new balance."""
        value = _positive_amount(amount)

        def _credit(db):
            user = self._lock_user(db, user_id)
            user.usd_balance = float(_money(user.usd_balance) + value)
            return user.usd_balance

        balance = self.run_in_transaction(_credit, "credit")
        print(f"[Ledger] Credited ${value:.2f} to user {user_id}")
        return balance

    def debit(self, user_id: int, amount) -> float:
        """Withdraw cash. Never overdraws."""
        value = _positive_amount(amount)

        def _debit(db):
            user = self._lock_user(db, user_id)
            balance = _money(user.usd_balance)
            if value > balance:
                raise InsufficientFunds(f"Insufficient funds. Need ${value:.2f}, have ${balance:.2f}")
            user.usd_balance = float(balance - value)
            return user.usd_balance

        balance = self.run_in_transaction(_debit, "debit")
        print(f"[Ledger] Debited ${value:.2f} from user {user_id}")
        return balance

    def fund_dividend_bank(self, team_id: int, amount) -> float:
        value = _positive_amount(amount)

        def _fund(db):
            team = self._lock_team(db, team_id)
            team.dividend_bank = float(_money(team.dividend_bank) + value)
            return team.dividend_bank

        bank = self.run_in_transaction(_fund, "fund_dividend_bank")
        print(f"[Ledger] Dividend bank for team {team_id} +${value:.2f} (now ${bank:.2f})")
        return bank

    # --------------------------
    # Trading
    # --------------------------
    def execute_trade(self, user_id: int, team_id: int, side: str, qty: int,
                      now: Optional[datetime] = None) -> TradeResult:
        """
        Buy or sell `qty` shares against the curve.

        The quote is recomputed from the supply read inside the transaction,
        never from anything the caller saw earlier.
        """
        side = normalize_side(side)
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise InvalidQuantity(f"Quantity must be a positive whole number, got {qty!r}")

        def _trade(db):
            ts = now or utcnow()
            team = self._lock_team(db, team_id)
            user = self._lock_user(db, user_id)
            holding = self._lock_holding(db, user_id, team_id)
            balance = _money(user.usd_balance)

            if side == TradeSide.BUY:
                decision = self.gate.state_for_team(db, team, ts)
                if not decision.is_open:
                    raise MarketClosed(decision.reason)
                quote = self.pricing.quote_buy(team.shares_outstanding, qty)
                if quote.total > balance:
                    raise InsufficientFunds(
                        f"Insufficient funds. Need ${quote.total:.2f}, have ${balance:.2f}")
                if holding is None:
                    holding = Holding(user_id=user_id, team_id=team_id, shares_owned=0, first_purchase=ts)
                    db.add(holding)
                user.usd_balance = float(balance - quote.total)
                team.shares_outstanding = quote.end_supply
                holding.shares_owned = holding.shares_owned + qty
            else:
                owned = holding.shares_owned if holding else 0
                if qty > owned:
                    raise InsufficientShares(f"Insufficient shares. You have {owned}.")
                quote = self.pricing.quote_sell(team.shares_outstanding, qty)
                user.usd_balance = float(balance + quote.total)
                team.shares_outstanding = quote.end_supply
                holding.shares_owned = owned - qty

            holding.last_transaction = ts
            tx = Transaction(
                user_id=user_id,
                team_id=team_id,
                side=side,
                shares_amount=qty,
                usd_amount=float(quote.total),
                avg_share_price=float(quote.avg_price),
                created_at=ts,
            )
            db.add(tx)
            db.flush()
            return TradeResult(
                transaction_id=tx.id,
                user_id=user_id,
                team_id=team_id,
                side=side,
                qty=qty,
                total=quote.total,
                avg_price=quote.avg_price,
                new_spot_price=quote.end_spot_price,
                shares_outstanding=team.shares_outstanding,
                usd_balance=user.usd_balance,
                shares_owned=holding.shares_owned,
            )

        result = self.run_in_transaction(_trade, f"{side} team {team_id}", retry_integrity=True)
        print(f"[Ledger] User {user_id} {side} {qty} x team {team_id} "
              f"@ avg ${result.avg_price:.4f} (total ${result.total:.2f}, spot now ${result.new_spot_price:.2f})")
        return result

    # --------------------------
    # Settlement
    # --------------------------
    def settle_win(self, team_id: int, game_id: Optional[str] = None,
                   league: Optional[str] = None) -> Optional[PayoutSummary]:
        """
        Pay the team's dividend bank out to its holders, pro-rata.

        Each payout is rounded down to the cent; the residue stays in the
        bank. When game_id is given the processed-game row is written in the
        same transaction, so a second settlement of that game commits
        nothing and returns None.
        """
        game_key = str(game_id) if game_id is not None else None

        def _settle(db):
            team = self._lock_team(db, team_id)
            if game_key is not None:
                db.add(ProcessedGame(game_id=game_key, league=(league or team.league).upper(),
                                     winner_team_id=team.id))
                db.flush()

            bank = _money(team.dividend_bank)
            pool = (bank * self.payout_fraction).quantize(CENT, rounding=ROUND_DOWN)
            holdings = db.query(Holding).filter(
                Holding.team_id == team.id,
                Holding.shares_owned > 0,
            ).order_by(Holding.user_id).all()
            held = sum(h.shares_owned for h in holdings)
            denominator = max(team.shares_outstanding, held)

            distributed = Decimal("0")
            paid = 0
            if pool > 0 and denominator > 0:
                ts = utcnow()
                for holding in holdings:
                    amount = (pool * holding.shares_owned / denominator).quantize(CENT, rounding=ROUND_DOWN)
                    if amount <= 0:
                        continue
                    user = db.query(User).filter(User.id == holding.user_id).with_for_update().first()
                    if not user:
                        print(f"[Ledger] Holder {holding.user_id} of team {team.id} has no account, skipped")
                        continue
                    user.usd_balance = float(_money(user.usd_balance) + amount)
                    db.add(DividendPayout(
                        user_id=user.id, team_id=team.id, game_id=game_key,
                        shares_owned=holding.shares_owned, amount=float(amount), paid_at=ts,
                    ))
                    distributed += amount
                    paid += 1
                team.dividend_bank = float(bank - distributed)

            return PayoutSummary(
                team_id=team.id,
                game_id=game_key,
                bank_before=bank,
                distributed=distributed,
                bank_after=bank - distributed,
                holders_paid=paid,
            )

        try:
            summary = self.run_in_transaction(_settle, f"settle team {team_id}")
        except IntegrityError:
            if game_key is not None and self.is_game_processed(game_key):
                print(f"[Ledger] Game {game_key} already settled, payout skipped")
                return None
            raise
        print(f"[Ledger] Win payout team {team_id}: ${summary.distributed:.2f} to "
              f"{summary.holders_paid} holders, bank ${summary.bank_before:.2f} -> ${summary.bank_after:.2f}")
        return summary

    def record_processed_game(self, game_id: str, league: str,
                              winner_team_id: Optional[int] = None) -> bool:
        """Write the fence for a game that pays nobody. False if it already exists."""
        def _record(db):
            db.add(ProcessedGame(game_id=str(game_id), league=league.upper(), winner_team_id=winner_team_id))
            db.flush()
            return True

        try:
            return self.run_in_transaction(_record, f"fence game {game_id}")
        except IntegrityError:
            if self.is_game_processed(game_id):
                return False
            raise

    # --------------------------
    # Standings / schedule
    # --------------------------
    def update_team_record(self, league: str, ticker: str, wins: int, losses: int, ties: int) -> Team:
        if min(wins, losses, ties) < 0:
            raise InvalidQuantity(f"Negative record for {league} {ticker}")

        def _update(db):
            team = db.query(Team).filter(
                Team.league == league.upper(), Team.ticker == ticker.upper()
            ).with_for_update().first()
            if not team:
                raise UnknownTeam(f"No {league} team with ticker {ticker}")
            team.wins, team.losses, team.ties = wins, losses, ties
            return team

        return self.run_in_transaction(_update, f"record {league} {ticker}")

    def update_team_schedule(self, league: str, ticker: str, opponent: Optional[str],
                             game_at: Optional[datetime], game_id: Optional[str]) -> Team:
        def _update(db):
            team = db.query(Team).filter(
                Team.league == league.upper(), Team.ticker == ticker.upper()
            ).with_for_update().first()
            if not team:
                raise UnknownTeam(f"No {league} team with ticker {ticker}")
            team.next_opponent = opponent
            team.next_game_at = game_at
            team.next_game_id = game_id
            return team

        return self.run_in_transaction(_update, f"schedule {league} {ticker}")


__all__ = ['LedgerStore', 'TradeResult', 'PayoutSummary']
