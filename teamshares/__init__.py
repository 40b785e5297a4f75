"""
Team shares market.

Users buy and sell shares in sports teams against a linear bonding curve.
Each team's dividend bank is paid out to its holders when the team wins,
exactly once per game, based on an external scoreboard feed.
"""

__version__ = "0.1.0"
