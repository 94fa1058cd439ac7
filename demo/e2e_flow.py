"""
End-to-end demo: MINT → APPROVE → CREATE SWAP → ACCEPT, plus a CANCEL

Runs both parties against one ledger and prints what each of them would see
in their wallet, rebuilt from the fact log.

Set SWAP_DB_PATH to keep the ledger on disk, then inspect it with
``python tools/replay.py $SWAP_DB_PATH --account alice``.
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from trading.context import SwapContext
from trading.errors import SwapLedgerError
from trading.metadata import CardMetadata, encode_metadata_uri, parse_card
from trading.views import LedgerView

ARTWORK = "https://raw.githubusercontent.com/PokeAPI/sprites/master/sprites/pokemon/other/official-artwork"


def mint_card(ctx: SwapContext, owner: str, name: str, dex_number: int) -> int:
    uri = encode_metadata_uri(
        CardMetadata(
            name=name,
            image=f"{ARTWORK}/{dex_number}.png",
            description="A unique trading card",
        )
    )
    return ctx.registry.create(owner, uri)


def show_wallet(view: LedgerView, account: str) -> None:
    cards = [
        f"#{r.asset_id} {parse_card(r.metadata).name}"
        for r in view.holdings.assets_of(account)
    ]
    offers = [
        f"swap {s.swap_id} [{s.state}]" for s in view.swap_book.swaps_involving(account)
    ]
    print(f"  {account:<6} cards: {', '.join(cards) or '-'}")
    print(f"  {'':<6} swaps: {', '.join(offers) or '-'}")


def main():
    logging.basicConfig(level=logging.WARNING)
    print("=" * 60)
    print("Card Swap End-to-End Demo")
    print("=" * 60)

    with SwapContext.from_env() as ctx:
        view = LedgerView()
        view.catch_up(ctx.store)
        ctx.store.subscribe(view.apply)
        coordinator = ctx.coordinator.account

        print("\n[1/4] Minting cards...")
        pikachu = mint_card(ctx, "alice", "Pikachu", 25)
        charizard = mint_card(ctx, "bob", "Charizard", 6)
        mewtwo = mint_card(ctx, "alice", "Mewtwo", 150)
        show_wallet(view, "alice")
        show_wallet(view, "bob")

        print("\n[2/4] Alice offers Pikachu for Bob's Charizard...")
        ctx.registry.set_operator(pikachu, coordinator, caller="alice")
        swap_id = ctx.coordinator.create_swap(pikachu, "bob", charizard, caller="alice")
        print(f"  swap {swap_id} created, Pikachu held by {ctx.registry.current_holder(pikachu)}")

        print("\n[3/4] Bob accepts...")
        ctx.registry.set_operator(charizard, coordinator, caller="bob")
        ctx.coordinator.accept_swap(swap_id, caller="bob")
        show_wallet(view, "alice")
        show_wallet(view, "bob")

        print("\n[4/4] Alice offers Mewtwo, then withdraws...")
        ctx.registry.set_operator(mewtwo, coordinator, caller="alice")
        second = ctx.coordinator.create_swap(mewtwo, "bob", pikachu, caller="alice")
        ctx.coordinator.cancel_swap(second, caller="alice")
        try:
            ctx.coordinator.accept_swap(second, caller="bob")
        except SwapLedgerError as e:
            print(f"  Bob's late accept rejected: {e.kind}")
        show_wallet(view, "alice")
        show_wallet(view, "bob")

        print("\n" + "=" * 60)
        print(f"Facts emitted: {ctx.store.latest_seq()}")
        print("=" * 60)


if __name__ == "__main__":
    main()
