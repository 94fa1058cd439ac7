"""
Daemons module: Background tasks that follow the ledger.
"""

from .fact_follower import FactFollower

__all__ = ['FactFollower']
