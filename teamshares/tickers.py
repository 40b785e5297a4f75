"""
tickers.py

Feed ticker translation: provider abbreviation -> canonical ticker.

Tables are scoped per league because the same provider code can mean
different teams in different leagues ("LA" is the Rams in the NFL and the
Kings in the NHL). Ambiguous entries are reported, never silently resolved.
"""

from typing import Dict, List, Optional

# ==========================
# TRANSLATION TABLES
# ==========================
DEFAULT_TICKER_MAP = {
    "NFL": {
        "WAS": "WSH",
        "JAC": "JAX",
        "LA": "LAR",
    },
    "NHL": {
        "TB": "TBL",
        "SJ": "SJS",
        "NJ": "NJD",
        "LA": "LAK",
        "WAS": "WSH",
        "MON": "MTL",
        "UTA": "UTAH",
    },
}


class TickerNormalizer:
    """Static, league-scoped provider -> canonical lookup."""

    def __init__(self, table: Optional[Dict[str, Dict[str, str]]] = None):
        source = DEFAULT_TICKER_MAP if table is None else table
        self.table = {
            league.upper(): {code.upper(): canonical.upper() for code, canonical in mapping.items()}
            for league, mapping in source.items()
        }
        for issue in self.collisions():
            print(f"[Tickers] WARNING ambiguous mapping: {issue}")

    def normalize(self, league: str, provider_ticker: str) -> str:
        code = str(provider_ticker or "").strip().upper()
        if not code:
            raise ValueError("Empty provider ticker")
        return self.table.get(league.upper(), {}).get(code, code)

    def collisions(self) -> List[str]:
        """
        Describe every entry that would make normalization ambiguous.

        - inside a league, a canonical ticker that is itself a provider code
          mapped to something else (normalize would not be idempotent)
        - inside a league, two provider codes that land on one canonical ticker
        - across leagues, one provider code mapped to different canonical tickers
        """
        issues = []
        for league, mapping in sorted(self.table.items()):
            targets = {}
            for code, canonical in sorted(mapping.items()):
                chained = mapping.get(canonical)
                if chained is not None and chained != canonical:
                    issues.append(f"{league}: {code} -> {canonical} -> {chained} is not idempotent")
                targets.setdefault(canonical, []).append(code)
            for canonical, codes in sorted(targets.items()):
                if len(codes) > 1:
                    issues.append(f"{league}: {', '.join(codes)} all map to {canonical}")

        by_code = {}
        for league, mapping in self.table.items():
            for code, canonical in mapping.items():
                by_code.setdefault(code, {})[league] = canonical
        for code, per_league in sorted(by_code.items()):
            if len(set(per_league.values())) > 1:
                detail = ", ".join(f"{lg}={t}" for lg, t in sorted(per_league.items()))
                issues.append(f"{code} maps differently across leagues ({detail})")
        return issues


__all__ = ['TickerNormalizer', 'DEFAULT_TICKER_MAP']
