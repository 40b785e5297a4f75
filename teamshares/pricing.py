"""
pricing.py

Bonding curve pricing for team shares.

Price of the share at supply s:  price(s) = BASE + SLOPE * s

Buying k shares from supply S pays for shares S+1 .. S+k, selling k shares
returns shares S .. S-k+1. Both are arithmetic series, so the total is
k/2 * (first + last). All math is Decimal so a quote is exactly reproducible
for any historical supply.
"""

from dataclasses import dataclass
from decimal import Decimal

from teamshares.config import CURVE_BASE_PRICE, CURVE_SLOPE
from teamshares.errors import InvalidQuantity, ValidationError
from teamshares.models import TradeSide


@dataclass(frozen=True)
class Quote:
    side: str
    qty: int
    start_supply: int
    end_supply: int
    total: Decimal
    avg_price: Decimal
    end_spot_price: Decimal

    def to_dict(self) -> dict:
        return {
            "side": self.side,
            "qty": self.qty,
            "start_supply": self.start_supply,
            "end_supply": self.end_supply,
            "total": float(self.total),
            "avg_price": float(self.avg_price),
            "end_spot_price": float(self.end_spot_price),
        }


def _check_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidQuantity(f"Quantity must be a positive whole number, got {qty!r}")
    return qty


class PricingEngine:
    """Stateless linear bonding curve."""

    def __init__(self, base_price: Decimal = CURVE_BASE_PRICE, slope: Decimal = CURVE_SLOPE):
        self.base_price = Decimal(base_price)
        self.slope = Decimal(slope)

    def price(self, supply: int) -> Decimal:
        return self.base_price + self.slope * supply

    def spot_price(self, supply: int) -> Decimal:
        return self.price(supply)

    def quote_buy(self, start_supply: int, qty: int) -> Quote:
        qty = _check_qty(qty)
        end_supply = start_supply + qty
        total = Decimal(qty) / 2 * (self.price(start_supply + 1) + self.price(end_supply))
        return Quote(
            side=TradeSide.BUY.value,
            qty=qty,
            start_supply=start_supply,
            end_supply=end_supply,
            total=total,
            avg_price=total / qty,
            end_spot_price=self.price(end_supply),
        )

    def quote_sell(self, start_supply: int, qty: int) -> Quote:
        qty = _check_qty(qty)
        if qty > start_supply:
            raise InvalidQuantity(f"Cannot sell {qty} shares, only {start_supply} in circulation")
        end_supply = start_supply - qty
        total = Decimal(qty) / 2 * (self.price(start_supply) + self.price(end_supply + 1))
        return Quote(
            side=TradeSide.SELL.value,
            qty=qty,
            start_supply=start_supply,
            end_supply=end_supply,
            total=total,
            avg_price=total / qty,
            end_spot_price=self.price(end_supply),
        )

    def quote(self, start_supply: int, side: str, qty: int) -> Quote:
        side = normalize_side(side)
        if side == TradeSide.BUY:
            return self.quote_buy(start_supply, qty)
        return self.quote_sell(start_supply, qty)

    def yield_per_share(self, dividend_bank, supply: int, payout_fraction: Decimal = Decimal("1")) -> Decimal:
        """What one share would receive if the team won right now."""
        if supply <= 0:
            return Decimal("0")
        return Decimal(str(dividend_bank)) * Decimal(payout_fraction) / supply


def normalize_side(side: str) -> str:
    value = str(side or "").strip().upper()
    try:
        return TradeSide(value).value
    except ValueError:
        raise ValidationError(f"Unknown trade side: {side!r}")


__all__ = ['PricingEngine', 'Quote', 'normalize_side']
