"""
errors.py

Error types for the team shares market.

Trade errors are raised synchronously to the caller and carry a `kind`
naming the exact rejection. Feed errors abort a single settlement run.
"""


class TeamSharesError(Exception):
    kind = "Error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message}


# ==========================
# VALIDATION
# ==========================
class ValidationError(TeamSharesError):
    kind = "ValidationError"


class InvalidQuantity(ValidationError):
    kind = "InvalidQuantity"


class InvalidAmount(ValidationError):
    kind = "InvalidAmount"


class UnknownTeam(ValidationError):
    kind = "UnknownTeam"


class UnknownUser(ValidationError):
    kind = "UnknownUser"


# ==========================
# TRADE REJECTIONS
# ==========================
class TradeRejected(TeamSharesError):
    kind = "TradeRejected"


class InsufficientFunds(TradeRejected):
    kind = "InsufficientFunds"


class InsufficientShares(TradeRejected):
    kind = "InsufficientShares"


class MarketClosed(TradeRejected):
    kind = "MarketClosed"

    def __init__(self, reason: str):
        super().__init__(f"Market closed: {reason}")
        self.reason = reason

    def to_dict(self) -> dict:
        return {"kind": self.kind, "error": self.message, "reason": self.reason}


class LedgerBusy(TeamSharesError):
    """Concurrent updates kept conflicting; the trade was not applied."""
    kind = "LedgerBusy"


# ==========================
# FEED
# ==========================
class FeedError(TeamSharesError):
    kind = "FeedError"


class FeedUnavailable(FeedError):
    kind = "FeedUnavailable"


class FeedParseError(FeedError):
    kind = "FeedParseError"


class MalformedRecord(TeamSharesError):
    kind = "MalformedRecord"


__all__ = [
    'TeamSharesError', 'ValidationError', 'InvalidQuantity', 'InvalidAmount',
    'UnknownTeam', 'UnknownUser', 'TradeRejected', 'InsufficientFunds',
    'InsufficientShares', 'MarketClosed', 'LedgerBusy', 'FeedError',
    'FeedUnavailable', 'FeedParseError', 'MalformedRecord',
]
