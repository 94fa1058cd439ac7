"""
Deterministic Replay: verify a swap ledger by replaying its fact log.

Validates:
1. Fact sequence strictly increasing
2. Asset lifecycle (created once, transfers from the current holder, nothing after burn)
3. Swap lifecycle (created once, PENDING -> EXECUTED | CANCELLED, never twice)
4. Escrow settlement (assets land with the right parties)
5. Replayed holders match the ledger's asset table

Usage:
    python tools/replay.py .state/swaps.db [--account alice]
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from trading.facts import Fact, FactKind
from trading.metadata import parse_card
from trading.store import LedgerStore
from trading.views import LedgerView


@dataclass
class ReplayReport:
    facts: int = 0
    assets: int = 0
    swaps: int = 0
    violations: List[str] = field(default_factory=list)
    view: Optional[LedgerView] = None

    @property
    def ok(self) -> bool:
        return not self.violations


def check_facts(facts: List[Fact]) -> List[str]:
    """
    Walk facts in order and return every invariant violation found.
    """
    violations = []
    holders: Dict[int, Optional[str]] = {}
    burned = set()
    swaps: Dict[int, dict] = {}
    last_seq = 0

    for fact in facts:
        if fact.seq <= last_seq:
            violations.append(f"#{fact.seq}: sequence not increasing after #{last_seq}")
        last_seq = max(last_seq, fact.seq)
        payload = fact.payload

        if fact.kind == FactKind.ASSET_CREATED:
            if fact.subject_id in holders:
                violations.append(f"#{fact.seq}: asset {fact.subject_id} created twice")
            holders[fact.subject_id] = payload["holder"]

        elif fact.kind in (FactKind.ASSET_TRANSFERRED, FactKind.OPERATOR_SET, FactKind.ASSET_BURNED):
            asset_id = fact.subject_id
            if asset_id not in holders:
                violations.append(f"#{fact.seq}: {fact.kind.value} for unknown asset {asset_id}")
                continue
            if asset_id in burned:
                violations.append(f"#{fact.seq}: {fact.kind.value} after asset {asset_id} burned")
                continue
            if fact.kind == FactKind.ASSET_TRANSFERRED:
                if payload["from"] != holders[asset_id]:
                    violations.append(
                        f"#{fact.seq}: asset {asset_id} sent by {payload['from']} "
                        f"but held by {holders[asset_id]}"
                    )
                holders[asset_id] = payload["to"]
                _mark_releases(swaps, asset_id, payload["from"], payload["to"])
            elif fact.kind == FactKind.ASSET_BURNED:
                burned.add(asset_id)
                holders[asset_id] = None

        elif fact.kind == FactKind.SWAP_CREATED:
            if fact.subject_id in swaps:
                violations.append(f"#{fact.seq}: swap {fact.subject_id} created twice")
                continue
            custody = holders.get(payload["proposer_asset"])
            if custody == payload["proposer"]:
                violations.append(
                    f"#{fact.seq}: swap {fact.subject_id} created without escrowing "
                    f"asset {payload['proposer_asset']}"
                )
            swaps[fact.subject_id] = dict(payload, custody=custody, released=set())

        elif fact.kind in (FactKind.SWAP_EXECUTED, FactKind.SWAP_CANCELLED):
            swap = swaps.get(fact.subject_id)
            if swap is None:
                violations.append(f"#{fact.seq}: {fact.kind.value} for unknown swap {fact.subject_id}")
                continue
            if swap["state"] != "PENDING":
                violations.append(
                    f"#{fact.seq}: swap {fact.subject_id} left terminal state {swap['state']}"
                )
                continue
            swap["state"] = payload["state"]
            released = swap["released"]
            if fact.kind == FactKind.SWAP_EXECUTED:
                if (swap["proposer_asset"], swap["counterparty"]) not in released:
                    violations.append(
                        f"#{fact.seq}: swap {fact.subject_id} executed but asset "
                        f"{swap['proposer_asset']} never released to {swap['counterparty']}"
                    )
                if (swap["counterparty_asset"], swap["proposer"]) not in released:
                    violations.append(
                        f"#{fact.seq}: swap {fact.subject_id} executed but asset "
                        f"{swap['counterparty_asset']} never released to {swap['proposer']}"
                    )
            elif (swap["proposer_asset"], swap["proposer"]) not in released:
                violations.append(
                    f"#{fact.seq}: swap {fact.subject_id} cancelled but asset "
                    f"{swap['proposer_asset']} never returned to {swap['proposer']}"
                )

    return violations


def _mark_releases(swaps: Dict[int, dict], asset_id: int, sender: str, recipient: str) -> None:
    """Record custody releases against the pending swaps they settle."""
    for swap in swaps.values():
        if swap["state"] != "PENDING" or sender != swap["custody"]:
            continue
        if asset_id in (swap["proposer_asset"], swap["counterparty_asset"]):
            swap["released"].add((asset_id, recipient))


def replay_ledger(db_path: str) -> ReplayReport:
    """
    Replay a ledger database's fact log and cross-check the asset table.

    The database is opened read-only; nothing is created or migrated.
    """
    report = ReplayReport(view=LedgerView())
    store = LedgerStore(db_path, read_only=True)
    try:
        if not store.has_table("facts"):
            report.violations.append("no fact log: facts table missing")
            return report

        facts = store.facts_since(0)
        report.facts = len(facts)
        report.violations.extend(check_facts(facts))

        view = report.view
        view.replay(facts)
        report.assets = len(view.holdings.live_assets())
        report.swaps = len(view.swap_book.swaps)

        rows = []
        if store.has_table("assets"):
            with store.lock:
                rows = store.conn.execute(
                    "SELECT asset_id, holder FROM assets WHERE burned = 0"
                ).fetchall()
        for asset_id, holder in rows:
            replayed = view.holdings.holder_of(asset_id)
            if replayed != holder:
                report.violations.append(
                    f"asset {asset_id}: ledger says {holder}, replay says {replayed}"
                )
    finally:
        store.close()
    return report


def _describe(metadata: Optional[str]) -> str:
    try:
        return parse_card(metadata).name
    except ValueError:
        return metadata or "?"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay and verify a swap ledger")
    parser.add_argument("db_path", help="Path to the ledger SQLite database")
    parser.add_argument("--account", help="Print holdings and swaps for this account")
    args = parser.parse_args(argv)

    if not Path(args.db_path).exists():
        print(f"✗ ERROR: Ledger not found: {args.db_path}")
        return 1

    print("=" * 60)
    print(f"Replaying ledger: {args.db_path}")
    print("=" * 60)

    report = replay_ledger(args.db_path)
    print(f"Facts replayed: {report.facts}")
    print(f"Live assets: {report.assets}")
    print(f"Swaps: {report.swaps} {report.view.swap_book.count_by_state()}")

    if args.account:
        print(f"\nAssets held by {args.account}:")
        for record in report.view.holdings.assets_of(args.account):
            print(f"  #{record.asset_id}  {_describe(record.metadata)}")
        print(f"\nSwaps involving {args.account}:")
        for swap in report.view.swap_book.swaps_involving(args.account):
            print(
                f"  swap {swap.swap_id} [{swap.state}] {swap.proposer} #{swap.proposer_asset}"
                f" <-> {swap.counterparty} #{swap.counterparty_asset}"
            )

    print("")
    if report.ok:
        print("✓ REPLAY SUCCESSFUL")
        return 0
    for violation in report.violations:
        print(f"  ✗ {violation}")
    print(f"✗ {len(report.violations)} violation(s)")
    return 1


if __name__ == "__main__":
    sys.exit(main())
