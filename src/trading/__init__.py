"""
Escrow-backed NFT swap ledger.

Asset registry, swap coordinator, fact log and the read models rebuilt
from it.
"""

from .config import SwapConfig
from .context import SwapContext
from .coordinator import Swap, SwapCoordinator, SwapState
from .errors import SwapLedgerError
from .facts import Fact, FactKind
from .registry import Asset, AssetRegistry
from .store import LedgerStore
from .views import HoldingsView, LedgerView, SwapBookView

__all__ = [
    'SwapConfig',
    'SwapContext',
    'Swap',
    'SwapCoordinator',
    'SwapState',
    'SwapLedgerError',
    'Fact',
    'FactKind',
    'Asset',
    'AssetRegistry',
    'LedgerStore',
    'HoldingsView',
    'LedgerView',
    'SwapBookView',
]
