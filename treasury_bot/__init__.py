"""
treasury_bot package

Unattended treasury agent: token tax -> NFT purchase + relist -> sale proceeds ->
token buyback + burn, driven by a single asyncio loop over a SQLite ledger.
"""

__version__ = "0.1.0"
