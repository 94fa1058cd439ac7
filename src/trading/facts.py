"""
Ledger facts: kinds, records, and validation rules.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, Any


class FactKind(Enum):
    """Types of facts emitted by the ledger"""
    ASSET_CREATED = "AssetCreated"          # New asset minted
    ASSET_TRANSFERRED = "AssetTransferred"  # Holder changed
    OPERATOR_SET = "OperatorSet"            # Holder (re)authorized an operator
    ASSET_BURNED = "AssetBurned"            # Asset destroyed
    SWAP_CREATED = "SwapCreated"            # Offer recorded, proposer asset escrowed
    SWAP_EXECUTED = "SwapExecuted"          # Both assets settled
    SWAP_CANCELLED = "SwapCancelled"        # Offer withdrawn, escrow returned
    PAUSE_CHANGED = "PauseChanged"          # Administrative switch flipped


ASSET_FACTS = frozenset({
    FactKind.ASSET_CREATED,
    FactKind.ASSET_TRANSFERRED,
    FactKind.OPERATOR_SET,
    FactKind.ASSET_BURNED,
})

SWAP_FACTS = frozenset({
    FactKind.SWAP_CREATED,
    FactKind.SWAP_EXECUTED,
    FactKind.SWAP_CANCELLED,
})

# Payload keys each kind must carry so consumers never need to re-query
REQUIRED_FIELDS = {
    FactKind.ASSET_CREATED: ("asset_id", "holder", "metadata"),
    FactKind.ASSET_TRANSFERRED: ("asset_id", "from", "to"),
    FactKind.OPERATOR_SET: ("asset_id", "holder", "operator"),
    FactKind.ASSET_BURNED: ("asset_id", "holder"),
    FactKind.SWAP_CREATED: (
        "swap_id", "proposer", "proposer_asset",
        "counterparty", "counterparty_asset", "state",
    ),
    FactKind.SWAP_EXECUTED: ("swap_id", "state"),
    FactKind.SWAP_CANCELLED: ("swap_id", "state"),
    FactKind.PAUSE_CHANGED: ("scope", "paused", "by"),
}


@dataclass(frozen=True)
class Fact:
    """Single immutable entry in the fact log"""
    seq: int                    # Position in the total order, starts at 1
    kind: FactKind
    subject_id: int             # Asset id or swap id, per kind (0 for PauseChanged)
    payload: Dict[str, Any]
    timestamp_ns: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "kind": self.kind.value,
            "subject_id": self.subject_id,
            "payload": self.payload,
            "timestamp_ns": self.timestamp_ns,
        }


def validate_account_id(account_id: str) -> None:
    """Validate account ID format"""
    if not isinstance(account_id, str):
        raise ValueError(f"Account ID must be string, got {type(account_id)}")
    if not account_id or not account_id.strip():
        raise ValueError("Account ID cannot be empty")


def validate_object_id(object_id: int, name: str = "id") -> None:
    """Validate an asset or swap id is a non-negative integer"""
    # bool is an int subclass; True must not pass as id 1
    if not isinstance(object_id, int) or isinstance(object_id, bool):
        raise ValueError(f"{name} must be integer, got {type(object_id)}")
    if object_id < 0:
        raise ValueError(f"{name} cannot be negative, got {object_id}")


def validate_fact(kind: FactKind, payload: Dict[str, Any]) -> None:
    """Check a payload carries every field its kind requires"""
    missing = [key for key in REQUIRED_FIELDS[kind] if key not in payload]
    if missing:
        raise ValueError(f"{kind.value} requires {', '.join(missing)} in payload")
