"""
Asset Registry: unique assets, their holders, and per-asset transfer operators.

Assets are created with sequential ids starting at 0 and never reused. Each
live asset has exactly one holder; the holder may name one operator who is
then allowed to transfer the asset once on the holder's behalf. Any change of
holder clears the operator.
"""

import logging
import time
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass

from observability.metrics import metrics_collector, operation_latency, track_time
from observability.tracing import create_span
from trading.errors import (
    NotAuthorizedError,
    NotHolderError,
    SwapLedgerError,
    SystemPausedError,
    UnknownAssetError,
)
from trading.facts import FactKind, validate_account_id, validate_object_id
from trading.store import LedgerStore

logger = logging.getLogger(__name__)

# (asset_id, from_account, to_account, caller); raising aborts the transfer
TransferReceiver = Callable[[int, str, str, str], None]


@dataclass
class Asset:
    """Asset state"""

    asset_id: int
    holder: str
    operator: Optional[str]  # Cleared on every holder change
    metadata: str  # Opaque payload reference, fixed at creation
    created_at: int  # Nanosecond timestamp


class AssetRegistry:
    """
    Registry of uniquely-held assets sharing the ledger store's connection.

    ``transfer`` is the only way a holder changes hands (``burn`` retires an
    asset). When an account has registered a transfer receiver, it is called
    after the holder update inside the same unit of work; if it raises, the
    transfer and everything the enclosing call did are rolled back.
    """

    CREATION_PAUSED_FLAG = "asset_creation_paused"

    def __init__(self, store: LedgerStore, admin: str):
        """
        Initialize asset registry.

        Args:
            store: LedgerStore providing connection, lock and fact log
            admin: Account allowed to pause and unpause asset creation
        """
        validate_account_id(admin)
        self.store = store
        self.conn = store.conn
        self.lock = store.lock
        self.admin = admin
        self._receivers: Dict[str, TransferReceiver] = {}
        self._init_schema()
        metrics_collector.set_paused("asset_creation", self.creation_paused)

    def _init_schema(self):
        """Initialize asset table"""
        with self.store.transaction():
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS assets (
                    asset_id INTEGER PRIMARY KEY CHECK(asset_id >= 0),
                    holder TEXT,
                    operator TEXT,
                    metadata TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    burned INTEGER NOT NULL DEFAULT 0
                )
            """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_assets_holder ON assets(holder)"
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @track_time(operation_latency.labels(operation="create_asset"))
    def create(self, owner: str, metadata: str) -> int:
        """
        Create a new asset held by ``owner``.

        Args:
            owner: Initial holder
            metadata: Opaque payload reference (e.g. a token URI)

        Returns:
            The new asset id

        Raises:
            SystemPausedError: If asset creation is paused
            ValueError: If owner or metadata are malformed
        """
        validate_account_id(owner)
        if not isinstance(metadata, str):
            raise ValueError(f"Metadata must be string, got {type(metadata)}")

        with create_span("registry.create", {"owner": owner}):
            with self.store.transaction():
                if self.creation_paused:
                    self._reject("create", SystemPausedError("Asset creation is paused"))

                # Burned rows are kept, so MAX never goes backwards
                asset_id = self.conn.execute(
                    "SELECT COALESCE(MAX(asset_id), -1) + 1 FROM assets"
                ).fetchone()[0]
                self.conn.execute(
                    """
                    INSERT INTO assets (asset_id, holder, operator, metadata, created_at)
                    VALUES (?, ?, NULL, ?, ?)
                """,
                    (asset_id, owner, metadata, time.time_ns()),
                )
                self.store.append_fact(
                    FactKind.ASSET_CREATED,
                    asset_id,
                    {"asset_id": asset_id, "holder": owner, "metadata": metadata},
                )
                self.store.after_commit(metrics_collector.record_asset_created)
                self.store.after_commit(logger.info, f"Created asset {asset_id} for {owner}")

        return asset_id

    def set_operator(self, asset_id: int, operator: Optional[str], caller: str) -> None:
        """
        Authorize ``operator`` to transfer the asset (None clears it).

        Raises:
            UnknownAssetError: If the asset does not exist
            NotHolderError: If caller is not the current holder
        """
        validate_object_id(asset_id, "asset_id")
        validate_account_id(caller)
        if operator is not None:
            validate_account_id(operator)

        with create_span("registry.set_operator", {"asset_id": asset_id}):
            with self.store.transaction():
                asset = self._require_asset(asset_id, "set_operator")
                if caller != asset.holder:
                    self._reject(
                        "set_operator",
                        NotHolderError(f"{caller} does not hold asset {asset_id}"),
                    )

                self.conn.execute(
                    "UPDATE assets SET operator = ? WHERE asset_id = ?",
                    (operator, asset_id),
                )
                self.store.append_fact(
                    FactKind.OPERATOR_SET,
                    asset_id,
                    {"asset_id": asset_id, "holder": caller, "operator": operator},
                )
                self.store.after_commit(
                    logger.debug, f"Asset {asset_id} operator set to {operator} by {caller}"
                )

    @track_time(operation_latency.labels(operation="transfer_asset"))
    def transfer(self, asset_id: int, from_account: str, to_account: str, caller: str) -> None:
        """
        Move an asset from its holder to another account.

        Args:
            asset_id: Asset to move
            from_account: Must equal the current holder
            to_account: New holder
            caller: Must be ``from_account`` or the asset's operator

        Raises:
            UnknownAssetError: If the asset does not exist
            NotHolderError: If from_account is not the current holder
            NotAuthorizedError: If caller is neither holder nor operator
        """
        validate_object_id(asset_id, "asset_id")
        validate_account_id(from_account)
        validate_account_id(to_account)
        validate_account_id(caller)

        with create_span(
            "registry.transfer",
            {"asset_id": asset_id, "from": from_account, "to": to_account},
        ):
            with self.store.transaction():
                asset = self._require_asset(asset_id, "transfer")
                if from_account != asset.holder:
                    self._reject(
                        "transfer",
                        NotHolderError(f"{from_account} does not hold asset {asset_id}"),
                    )
                if caller != from_account and caller != asset.operator:
                    self._reject(
                        "transfer",
                        NotAuthorizedError(
                            f"{caller} may not transfer asset {asset_id} for {from_account}"
                        ),
                    )

                self.conn.execute(
                    "UPDATE assets SET holder = ?, operator = NULL WHERE asset_id = ?",
                    (to_account, asset_id),
                )
                self.store.append_fact(
                    FactKind.ASSET_TRANSFERRED,
                    asset_id,
                    {"asset_id": asset_id, "from": from_account, "to": to_account},
                )
                self.store.after_commit(
                    metrics_collector.record_transfer,
                    "holder" if caller == from_account else "operator",
                )
                self.store.after_commit(
                    logger.info,
                    f"Transferred asset {asset_id}: {from_account} -> {to_account}",
                )

                receiver = self._receivers.get(to_account)
                if receiver is not None:
                    receiver(asset_id, from_account, to_account, caller)

    def burn(self, asset_id: int, caller: str) -> None:
        """
        Destroy an asset. Its id is never reused.

        Raises:
            UnknownAssetError: If the asset does not exist
            NotAuthorizedError: If caller is neither holder nor operator
        """
        validate_object_id(asset_id, "asset_id")
        validate_account_id(caller)

        with create_span("registry.burn", {"asset_id": asset_id}):
            with self.store.transaction():
                asset = self._require_asset(asset_id, "burn")
                if caller != asset.holder and caller != asset.operator:
                    self._reject(
                        "burn",
                        NotAuthorizedError(f"{caller} may not burn asset {asset_id}"),
                    )

                self.conn.execute(
                    "UPDATE assets SET burned = 1, holder = NULL, operator = NULL "
                    "WHERE asset_id = ?",
                    (asset_id,),
                )
                self.store.append_fact(
                    FactKind.ASSET_BURNED,
                    asset_id,
                    {"asset_id": asset_id, "holder": asset.holder},
                )
                self.store.after_commit(metrics_collector.record_burn)
                self.store.after_commit(
                    logger.info, f"Burned asset {asset_id} (held by {asset.holder})"
                )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @property
    def creation_paused(self) -> bool:
        return self.store.get_flag(self.CREATION_PAUSED_FLAG)

    def pause_creation(self, caller: str) -> None:
        """Stop new assets from being created (admin only)"""
        self._set_creation_paused(True, caller)

    def unpause_creation(self, caller: str) -> None:
        """Allow asset creation again (admin only)"""
        self._set_creation_paused(False, caller)

    def _set_creation_paused(self, value: bool, caller: str) -> None:
        validate_account_id(caller)
        operation = "pause_creation" if value else "unpause_creation"
        with self.store.transaction():
            if caller != self.admin:
                self._reject(
                    operation, NotAuthorizedError(f"{caller} is not the administrator")
                )
            if self.creation_paused == value:
                logger.debug(f"Asset creation already {'paused' if value else 'running'}")
                return
            self.store.set_flag(self.CREATION_PAUSED_FLAG, value)
            self.store.append_fact(
                FactKind.PAUSE_CHANGED,
                0,
                {"scope": "asset_creation", "paused": value, "by": caller},
            )
            self.store.after_commit(metrics_collector.set_paused, "asset_creation", value)
            self.store.after_commit(
                logger.info,
                f"Asset creation {'paused' if value else 'resumed'} by {caller}",
            )

    # ------------------------------------------------------------------
    # Transfer receivers
    # ------------------------------------------------------------------

    def register_receiver(self, account: str, receiver: TransferReceiver) -> None:
        """
        Register a callback run whenever ``account`` receives an asset.

        The callback runs inside the transferring call; it may query or call
        back into the registry and coordinator, and may veto the transfer by
        raising.
        """
        validate_account_id(account)
        self._receivers[account] = receiver

    def unregister_receiver(self, account: str) -> None:
        self._receivers.pop(account, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_holder(self, asset_id: int) -> str:
        """
        Get the account currently holding an asset.

        Raises:
            UnknownAssetError: If never created or burned
        """
        validate_object_id(asset_id, "asset_id")
        with self.lock:
            return self._require_asset(asset_id).holder

    def authorized_operator(self, asset_id: int) -> Optional[str]:
        """Get the asset's operator (None if unset)"""
        validate_object_id(asset_id, "asset_id")
        with self.lock:
            return self._require_asset(asset_id).operator

    def metadata(self, asset_id: int) -> str:
        """Get the payload reference attached at creation"""
        validate_object_id(asset_id, "asset_id")
        with self.lock:
            return self._require_asset(asset_id).metadata

    def asset(self, asset_id: int) -> Asset:
        validate_object_id(asset_id, "asset_id")
        with self.lock:
            return self._require_asset(asset_id)

    def balance_of(self, account: str) -> int:
        """Number of live assets held by an account"""
        validate_account_id(account)
        with self.lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM assets WHERE holder = ? AND burned = 0",
                (account,),
            ).fetchone()
        return row[0]

    def assets_of(self, account: str) -> List[Asset]:
        """Live assets held by an account, ordered by id"""
        validate_account_id(account)
        with self.lock:
            cursor = self.conn.execute(
                """
                SELECT asset_id, holder, operator, metadata, created_at
                FROM assets
                WHERE holder = ? AND burned = 0
                ORDER BY asset_id ASC
            """,
                (account,),
            )
            return [Asset(*row) for row in cursor.fetchall()]

    def next_asset_id(self) -> int:
        """Id the next ``create`` call will assign"""
        with self.lock:
            row = self.conn.execute(
                "SELECT COALESCE(MAX(asset_id), -1) + 1 FROM assets"
            ).fetchone()
        return row[0]

    def total_assets(self) -> int:
        """Number of live assets"""
        with self.lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM assets WHERE burned = 0"
            ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_asset(self, asset_id: int, operation: Optional[str] = None) -> Asset:
        """Load a live asset or raise UnknownAssetError. Caller holds the lock."""
        row = self.conn.execute(
            """
            SELECT asset_id, holder, operator, metadata, created_at
            FROM assets
            WHERE asset_id = ? AND burned = 0
        """,
            (asset_id,),
        ).fetchone()
        if not row:
            error = UnknownAssetError(f"Asset not found: {asset_id}")
            if operation:
                self._reject(operation, error)
            raise error
        return Asset(*row)

    def _reject(self, operation: str, error: SwapLedgerError) -> None:
        metrics_collector.record_rejection(operation, error.kind)
        logger.debug(f"Rejected {operation}: {error}")
        raise error
