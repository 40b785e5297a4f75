"""
services.py

Builds the market's collaborators from one MarketConfig.
"""

from dataclasses import dataclass
from typing import Optional

from teamshares import database
from teamshares.config import MarketConfig
from teamshares.feed import EspnFeedAdapter
from teamshares.ledger import LedgerStore
from teamshares.market_gate import MarketGate
from teamshares.pricing import PricingEngine
from teamshares.settlement import SettlementSync
from teamshares.tickers import TickerNormalizer


@dataclass
class MarketServices:
    config: MarketConfig
    engine: object
    session_factory: object
    pricing: PricingEngine
    gate: MarketGate
    ledger: LedgerStore
    normalizer: TickerNormalizer
    feed: object
    sync: SettlementSync

    def close(self):
        self.engine.dispose()


def build_services(config: MarketConfig, feed=None, normalizer: Optional[TickerNormalizer] = None) -> MarketServices:
    engine = database.make_engine(config.database_url)
    database.initialize(engine)
    session_factory = database.make_session_factory(engine)

    pricing = PricingEngine(config.curve_base_price, config.curve_slope)
    gate = MarketGate(session_factory, config)
    ledger = LedgerStore(session_factory, config, pricing=pricing, gate=gate)
    normalizer = normalizer if normalizer is not None else TickerNormalizer()
    feed = feed if feed is not None else EspnFeedAdapter(config)
    sync = SettlementSync(config, ledger, feed, normalizer)

    print(f"[Services] Market ready ({', '.join(config.leagues) or 'no leagues'})")
    return MarketServices(
        config=config,
        engine=engine,
        session_factory=session_factory,
        pricing=pricing,
        gate=gate,
        ledger=ledger,
        normalizer=normalizer,
        feed=feed,
        sync=sync,
    )


__all__ = ['MarketServices', 'build_services']
