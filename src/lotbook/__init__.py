"""
lotbook - lot-level portfolio ledger

Tracks a user's portfolios of assets held as discrete purchase lots, keeps
portfolios, assets and lots referentially consistent, and values the
holdings at live market quotes with lot, asset, portfolio and net-worth
rollups.
"""

__version__ = "0.1.0"
__author__ = "lotbook developers"
