"""
Unit tests for the Asset Registry.

Tests asset creation, holder queries, operator approval, transfers, burning,
the creation pause switch, and transfer receivers.
"""

import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from trading.errors import (
    NotAuthorizedError,
    NotHolderError,
    SystemPausedError,
    UnknownAssetError,
)
from trading.facts import FactKind
from trading.registry import AssetRegistry
from trading.store import LedgerStore


@pytest.fixture
def registry():
    store = LedgerStore()
    yield AssetRegistry(store, admin="admin")
    store.close()


class TestCreate:
    """Test asset creation and id assignment"""

    def test_ids_start_at_zero_and_increase(self, registry):
        """Test sequential ids beginning at 0"""
        assert registry.create("alice", "ipfs://a") == 0
        assert registry.create("bob", "ipfs://b") == 1
        assert registry.create("alice", "ipfs://c") == 2
        assert registry.next_asset_id() == 3

    def test_new_asset_has_holder_and_no_operator(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        assert registry.current_holder(asset_id) == "alice"
        assert registry.authorized_operator(asset_id) is None
        assert registry.metadata(asset_id) == "ipfs://a"

    def test_create_emits_fact(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        facts = registry.store.facts_since(0)
        assert len(facts) == 1
        assert facts[0].kind == FactKind.ASSET_CREATED
        assert facts[0].subject_id == asset_id
        assert facts[0].payload == {"asset_id": 0, "holder": "alice", "metadata": "ipfs://a"}

    def test_create_rejects_bad_arguments(self, registry):
        """Test malformed owner or metadata raise ValueError"""
        with pytest.raises(ValueError):
            registry.create("", "ipfs://a")
        with pytest.raises(ValueError):
            registry.create("alice", None)

        assert registry.total_assets() == 0
        assert registry.store.latest_seq() == 0


class TestQueries:
    """Test holder, operator and balance queries"""

    def test_unknown_asset(self, registry):
        with pytest.raises(UnknownAssetError):
            registry.current_holder(0)
        with pytest.raises(UnknownAssetError):
            registry.authorized_operator(7)

    def test_negative_or_non_integer_id(self, registry):
        registry.create("alice", "ipfs://a")

        with pytest.raises(ValueError):
            registry.current_holder(-1)
        with pytest.raises(ValueError):
            registry.current_holder(True)

    def test_balance_and_assets_of(self, registry):
        registry.create("alice", "ipfs://a")
        registry.create("bob", "ipfs://b")
        registry.create("alice", "ipfs://c")

        assert registry.balance_of("alice") == 2
        assert registry.balance_of("bob") == 1
        assert registry.balance_of("carol") == 0
        assert [a.asset_id for a in registry.assets_of("alice")] == [0, 2]
        assert registry.total_assets() == 3

    def test_asset_record(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")

        asset = registry.asset(asset_id)
        assert asset.asset_id == asset_id
        assert asset.holder == "alice"
        assert asset.operator == "market"
        assert asset.created_at > 0


class TestOperators:
    """Test per-asset operator authorization"""

    def test_holder_sets_and_clears_operator(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        registry.set_operator(asset_id, "market", caller="alice")
        assert registry.authorized_operator(asset_id) == "market"

        registry.set_operator(asset_id, None, caller="alice")
        assert registry.authorized_operator(asset_id) is None

    def test_latest_operator_wins(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        registry.set_operator(asset_id, "market", caller="alice")
        registry.set_operator(asset_id, "auction", caller="alice")

        assert registry.authorized_operator(asset_id) == "auction"

    def test_non_holder_cannot_set_operator(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        with pytest.raises(NotHolderError):
            registry.set_operator(asset_id, "mallory", caller="mallory")
        assert registry.authorized_operator(asset_id) is None

    def test_operator_set_emits_fact(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")

        fact = registry.store.facts_since(1)[0]
        assert fact.kind == FactKind.OPERATOR_SET
        assert fact.payload["operator"] == "market"


class TestTransfers:
    """Test holder changes"""

    def test_holder_transfers(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        registry.transfer(asset_id, "alice", "bob", caller="alice")

        assert registry.current_holder(asset_id) == "bob"
        assert registry.balance_of("alice") == 0
        assert registry.balance_of("bob") == 1

    def test_operator_transfers_and_is_cleared(self, registry):
        """Test the operator may move the asset once, then loses authority"""
        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")

        registry.transfer(asset_id, "alice", "bob", caller="market")

        assert registry.current_holder(asset_id) == "bob"
        assert registry.authorized_operator(asset_id) is None
        with pytest.raises(NotAuthorizedError):
            registry.transfer(asset_id, "bob", "market", caller="market")

    def test_wrong_sender_is_not_holder(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        with pytest.raises(NotHolderError):
            registry.transfer(asset_id, "bob", "carol", caller="bob")
        assert registry.current_holder(asset_id) == "alice"

    def test_stranger_is_not_authorized(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        with pytest.raises(NotAuthorizedError):
            registry.transfer(asset_id, "alice", "mallory", caller="mallory")
        assert registry.current_holder(asset_id) == "alice"

    def test_transfer_unknown_asset(self, registry):
        with pytest.raises(UnknownAssetError):
            registry.transfer(3, "alice", "bob", caller="alice")

    def test_self_transfer_clears_operator(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")

        registry.transfer(asset_id, "alice", "alice", caller="alice")

        assert registry.current_holder(asset_id) == "alice"
        assert registry.authorized_operator(asset_id) is None

    def test_transfer_emits_fact(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.transfer(asset_id, "alice", "bob", caller="alice")

        fact = registry.store.facts_since(0)[-1]
        assert fact.kind == FactKind.ASSET_TRANSFERRED
        assert fact.payload == {"asset_id": asset_id, "from": "alice", "to": "bob"}

    def test_rejected_transfer_emits_nothing(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        before = registry.store.latest_seq()

        with pytest.raises(NotAuthorizedError):
            registry.transfer(asset_id, "alice", "mallory", caller="mallory")

        assert registry.store.latest_seq() == before


class TestBurn:
    """Test asset destruction"""

    def test_burn_removes_asset_and_keeps_id(self, registry):
        first = registry.create("alice", "ipfs://a")
        registry.create("alice", "ipfs://b")

        registry.burn(first, caller="alice")

        with pytest.raises(UnknownAssetError):
            registry.current_holder(first)
        assert registry.balance_of("alice") == 1
        assert registry.total_assets() == 1
        # Burned ids are never reassigned
        assert registry.create("alice", "ipfs://c") == 2

    def test_operator_may_burn(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")

        registry.burn(asset_id, caller="market")

        assert registry.total_assets() == 0

    def test_stranger_cannot_burn(self, registry):
        asset_id = registry.create("alice", "ipfs://a")

        with pytest.raises(NotAuthorizedError):
            registry.burn(asset_id, caller="mallory")
        assert registry.current_holder(asset_id) == "alice"

    def test_burned_asset_cannot_move(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.burn(asset_id, caller="alice")

        with pytest.raises(UnknownAssetError):
            registry.transfer(asset_id, "alice", "bob", caller="alice")


class TestCreationPause:
    """Test the administrative creation switch"""

    def test_pause_blocks_creation(self, registry):
        registry.pause_creation(caller="admin")

        assert registry.creation_paused
        with pytest.raises(SystemPausedError):
            registry.create("alice", "ipfs://a")
        assert registry.next_asset_id() == 0

        registry.unpause_creation(caller="admin")
        assert registry.create("alice", "ipfs://a") == 0

    def test_pause_does_not_block_transfers(self, registry):
        asset_id = registry.create("alice", "ipfs://a")
        registry.pause_creation(caller="admin")

        registry.transfer(asset_id, "alice", "bob", caller="alice")

        assert registry.current_holder(asset_id) == "bob"

    def test_non_admin_cannot_pause(self, registry):
        with pytest.raises(NotAuthorizedError):
            registry.pause_creation(caller="alice")
        assert not registry.creation_paused

    def test_repeated_pause_emits_one_fact(self, registry):
        registry.pause_creation(caller="admin")
        registry.pause_creation(caller="admin")

        facts = registry.store.facts_since(0)
        assert [f.kind for f in facts] == [FactKind.PAUSE_CHANGED]
        assert facts[0].payload == {"scope": "asset_creation", "paused": True, "by": "admin"}


class TestReceivers:
    """Test transfer receiver callbacks"""

    def test_receiver_sees_transfer(self, registry):
        calls = []
        registry.register_receiver("bob", lambda *args: calls.append(args))
        asset_id = registry.create("alice", "ipfs://a")

        registry.transfer(asset_id, "alice", "bob", caller="alice")

        assert calls == [(asset_id, "alice", "bob", "alice")]

    def test_receiver_sees_new_holder(self, registry):
        """Test the callback observes the transfer already applied"""
        seen = []
        asset_id = registry.create("alice", "ipfs://a")
        registry.register_receiver(
            "bob", lambda aid, *_: seen.append(registry.current_holder(aid))
        )

        registry.transfer(asset_id, "alice", "bob", caller="alice")

        assert seen == ["bob"]

    def test_receiver_veto_rolls_back(self, registry):
        def refuse(*args):
            raise RuntimeError("not accepting")

        asset_id = registry.create("alice", "ipfs://a")
        registry.set_operator(asset_id, "market", caller="alice")
        registry.register_receiver("bob", refuse)
        before = registry.store.latest_seq()

        with pytest.raises(RuntimeError):
            registry.transfer(asset_id, "alice", "bob", caller="market")

        assert registry.current_holder(asset_id) == "alice"
        assert registry.authorized_operator(asset_id) == "market"
        assert registry.store.latest_seq() == before

    def test_unregister_receiver(self, registry):
        calls = []
        registry.register_receiver("bob", lambda *args: calls.append(args))
        registry.unregister_receiver("bob")
        asset_id = registry.create("alice", "ipfs://a")

        registry.transfer(asset_id, "alice", "bob", caller="alice")

        assert calls == []
