"""
Derived Views over the fact log

Client-side read models rebuilt purely from facts, without querying the
ledger:

- HoldingsView: who holds which asset ("my assets")
- SwapBookView: swap offers by party and state ("my open swaps")
- LedgerView: both of the above plus pause switches, fed from one stream

Every record remembers the sequence number of the last fact applied to it
and ignores any fact that is not newer, so duplicated or out-of-order
delivery converges to the same view as an in-order replay.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Set
from collections import defaultdict

from trading.facts import ASSET_FACTS, SWAP_FACTS, Fact, FactKind

logger = logging.getLogger(__name__)


class FactSource(Protocol):
    """Anything that can serve the fact log from an offset (e.g. LedgerStore)"""

    def facts_since(self, offset: int = 0, limit: Optional[int] = None) -> List[Fact]:
        ...


@dataclass
class AssetRecord:
    asset_id: int
    holder: Optional[str] = None
    operator: Optional[str] = None
    metadata: Optional[str] = None
    burned: bool = False
    last_seq: int = 0


@dataclass
class SwapRecord:
    swap_id: int
    proposer: Optional[str] = None
    proposer_asset: Optional[int] = None
    counterparty: Optional[str] = None
    counterparty_asset: Optional[int] = None
    state: Optional[str] = None
    last_seq: int = 0

    @property
    def is_known(self) -> bool:
        """False until the SwapCreated fact has been seen"""
        return self.proposer is not None


class HoldingsView:
    """
    Materialized view of asset holders.

    Maintains an index from holder to asset ids for "assets of account"
    queries.
    """

    def __init__(self):
        self.assets: Dict[int, AssetRecord] = {}
        self.by_holder: Dict[str, Set[int]] = defaultdict(set)

    def apply(self, fact: Fact) -> bool:
        """
        Fold one asset fact into the view.

        Returns:
            True if the view changed
        """
        if fact.kind not in ASSET_FACTS:
            return False

        record = self.assets.get(fact.subject_id)
        if record is None:
            record = AssetRecord(asset_id=fact.subject_id)
            self.assets[fact.subject_id] = record

        if fact.kind == FactKind.ASSET_CREATED:
            # Metadata is immutable, so a late creation fact may still fill it in
            record.metadata = fact.payload["metadata"]

        if fact.seq <= record.last_seq:
            return False

        if fact.kind == FactKind.ASSET_CREATED:
            self._set_holder(record, fact.payload["holder"])
        elif fact.kind == FactKind.ASSET_TRANSFERRED:
            self._set_holder(record, fact.payload["to"])
            record.operator = None
        elif fact.kind == FactKind.OPERATOR_SET:
            # Carries the holder too, so it stands alone when it arrives first
            self._set_holder(record, fact.payload["holder"])
            record.operator = fact.payload["operator"]
        elif fact.kind == FactKind.ASSET_BURNED:
            self._set_holder(record, None)
            record.operator = None
            record.burned = True

        record.last_seq = fact.seq
        return True

    def _set_holder(self, record: AssetRecord, holder: Optional[str]) -> None:
        if record.holder is not None:
            self.by_holder[record.holder].discard(record.asset_id)
        record.holder = holder
        if holder is not None:
            self.by_holder[holder].add(record.asset_id)

    def holder_of(self, asset_id: int) -> Optional[str]:
        record = self.assets.get(asset_id)
        return record.holder if record else None

    def assets_of(self, account: str) -> List[AssetRecord]:
        """
        Get live assets held by an account.

        Args:
            account: Holder account

        Returns:
            Asset records ordered by id
        """
        asset_ids = sorted(self.by_holder.get(account, set()))
        return [self.assets[aid] for aid in asset_ids]

    def live_assets(self) -> List[AssetRecord]:
        return [r for r in self.assets.values() if not r.burned and r.holder is not None]

    def count_by_holder(self) -> Dict[str, int]:
        return {holder: len(ids) for holder, ids in self.by_holder.items() if ids}


class SwapBookView:
    """
    Materialized view of swap offers.

    Maintains indexes by state and by party. A cancelled swap stays in the
    book with state CANCELLED but is hidden from per-account listings unless
    asked for.
    """

    def __init__(self):
        self.swaps: Dict[int, SwapRecord] = {}
        self.by_state: Dict[str, Set[int]] = defaultdict(set)
        self.by_party: Dict[str, Set[int]] = defaultdict(set)

    def apply(self, fact: Fact) -> bool:
        """
        Fold one swap fact into the view.

        Returns:
            True if the view changed
        """
        if fact.kind not in SWAP_FACTS:
            return False

        record = self.swaps.get(fact.subject_id)
        if record is None:
            record = SwapRecord(swap_id=fact.subject_id)
            self.swaps[fact.subject_id] = record

        changed = False
        if fact.kind == FactKind.SWAP_CREATED and not record.is_known:
            payload = fact.payload
            record.proposer = payload["proposer"]
            record.proposer_asset = payload["proposer_asset"]
            record.counterparty = payload["counterparty"]
            record.counterparty_asset = payload["counterparty_asset"]
            self.by_party[record.proposer].add(record.swap_id)
            self.by_party[record.counterparty].add(record.swap_id)
            changed = True

        if fact.seq > record.last_seq:
            self._set_state(record, fact.payload["state"])
            record.last_seq = fact.seq
            changed = True

        return changed

    def _set_state(self, record: SwapRecord, state: str) -> None:
        if record.state is not None:
            self.by_state[record.state].discard(record.swap_id)
        record.state = state
        self.by_state[state].add(record.swap_id)

    def get_swap(self, swap_id: int) -> Optional[SwapRecord]:
        record = self.swaps.get(swap_id)
        return record if record and record.is_known else None

    def get_swaps_by_state(self, state: str) -> List[SwapRecord]:
        swap_ids = sorted(self.by_state.get(state, set()))
        return [self.swaps[sid] for sid in swap_ids if self.swaps[sid].is_known]

    def swaps_involving(self, account: str, include_cancelled: bool = False) -> List[SwapRecord]:
        """
        Get swaps an account proposed or was offered.

        Args:
            account: Proposer or counterparty
            include_cancelled: Also list withdrawn offers

        Returns:
            Swap records ordered by id
        """
        records = [self.swaps[sid] for sid in sorted(self.by_party.get(account, set()))]
        if include_cancelled:
            return records
        return [r for r in records if r.state != "CANCELLED"]

    def open_swaps_for(self, account: str) -> List[SwapRecord]:
        """Pending swaps the account is party to"""
        return [r for r in self.swaps_involving(account) if r.state == "PENDING"]

    def incoming_offers(self, account: str) -> List[SwapRecord]:
        """Pending swaps waiting for this account to accept"""
        return [r for r in self.open_swaps_for(account) if r.counterparty == account]

    def count_by_state(self) -> Dict[str, int]:
        return {state: len(ids) for state, ids in self.by_state.items() if ids}


class LedgerView:
    """
    Holdings, swap book and pause switches rebuilt from one fact stream.

    ``offset`` is the highest sequence number applied; ``catch_up`` resumes
    reading the source from there.
    """

    def __init__(self):
        self.holdings = HoldingsView()
        self.swap_book = SwapBookView()
        self.paused: Dict[str, bool] = {}
        self._pause_seq: Dict[str, int] = {}
        self.offset = 0

    def apply(self, fact: Fact) -> bool:
        if fact.kind in ASSET_FACTS:
            changed = self.holdings.apply(fact)
        elif fact.kind in SWAP_FACTS:
            changed = self.swap_book.apply(fact)
        else:
            changed = self._apply_pause(fact)
        self.offset = max(self.offset, fact.seq)
        return changed

    def _apply_pause(self, fact: Fact) -> bool:
        scope = fact.payload["scope"]
        if fact.seq <= self._pause_seq.get(scope, 0):
            return False
        self.paused[scope] = bool(fact.payload["paused"])
        self._pause_seq[scope] = fact.seq
        return True

    def replay(self, facts: Iterable[Fact]) -> int:
        """
        Apply a batch of facts in any order.

        Returns:
            Number of facts that changed the view
        """
        return sum(1 for fact in facts if self.apply(fact))

    def catch_up(self, source: FactSource, batch_size: int = 500) -> int:
        """
        Pull and apply every fact newer than ``offset``.

        Returns:
            Number of facts read from the source
        """
        total = 0
        while True:
            batch = source.facts_since(self.offset, limit=batch_size)
            if not batch:
                break
            self.replay(batch)
            total += len(batch)
        if total:
            logger.debug(f"View caught up {total} facts (offset={self.offset})")
        return total
