"""
Swap Coordinator: escrow-backed two-party asset swaps.

Lifecycle per swap id:

    (none) -> PENDING -> EXECUTED
                      -> CANCELLED

The proposer's asset sits in coordinator custody while the swap is PENDING.
Every mutating call flips the swap's state with a compare-and-set before it
moves any asset, so a re-entrant call (from a transfer receiver) or a racing
thread finds the swap already terminal and fails with SwapNotPendingError.
"""

import logging
import time
from typing import List, Optional
from dataclasses import dataclass
from enum import Enum

from observability.metrics import metrics_collector, operation_latency, track_time
from observability.tracing import create_span
from trading.errors import (
    CounterpartyMismatchError,
    IdenticalAssetsError,
    NotApprovedError,
    NotAuthorizedError,
    NotCounterpartyError,
    NotOwnerError,
    NotProposerError,
    OwnershipChangedError,
    SwapLedgerError,
    SwapNotPendingError,
    SystemPausedError,
    UnknownAssetError,
    UnknownSwapError,
)
from trading.facts import FactKind, validate_account_id, validate_object_id
from trading.registry import AssetRegistry

logger = logging.getLogger(__name__)


class SwapState(Enum):
    """States a swap can be in."""

    PENDING = "PENDING"  # Proposer asset escrowed, waiting for counterparty
    EXECUTED = "EXECUTED"  # Both assets settled to their new holders
    CANCELLED = "CANCELLED"  # Proposer withdrew, escrow returned

    @property
    def is_terminal(self) -> bool:
        return self is not SwapState.PENDING


@dataclass
class Swap:
    """A proposed or settled exchange of two assets"""

    swap_id: int
    proposer: str
    proposer_asset: int
    counterparty: str  # Recorded at creation, never re-derived
    counterparty_asset: int
    state: SwapState
    created_at: int  # Nanosecond timestamp
    settled_at: Optional[int] = None  # Set when the swap turns terminal


class SwapCoordinator:
    """
    Registry of swap offers and the escrow agent that settles them.

    The coordinator acts under a single account: it is the operator holders
    must approve before proposing or accepting, and the custody holder of
    every escrowed asset. It shares the registry's store, so a swap record
    and the transfers that back it commit or roll back together.
    """

    PAUSED_FLAG = "swaps_paused"

    def __init__(
        self,
        registry: AssetRegistry,
        account: str,
        admin: str,
        allow_cancel_when_paused: bool = False,
    ):
        """
        Initialize swap coordinator.

        Args:
            registry: AssetRegistry holding the traded assets
            account: Coordinator's own account (operator and custody holder)
            admin: Account allowed to pause and unpause swaps
            allow_cancel_when_paused: Let proposers withdraw offers during a pause
        """
        validate_account_id(account)
        validate_account_id(admin)
        self.registry = registry
        self.store = registry.store
        self.conn = registry.conn
        self.lock = registry.lock
        self.account = account
        self.admin = admin
        self.allow_cancel_when_paused = allow_cancel_when_paused
        self._init_schema()

        # Custody only accepts assets the coordinator pulls in itself
        self.registry.register_receiver(self.account, self._on_custody_received)

        # Gauges reflect the opened ledger, not this process's history
        self._refresh_pending_gauge()
        metrics_collector.set_paused("swaps", self.is_paused)

    def _init_schema(self):
        """Initialize swap table"""
        with self.store.transaction():
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS swaps (
                    swap_id INTEGER PRIMARY KEY CHECK(swap_id > 0),
                    proposer TEXT NOT NULL,
                    proposer_asset INTEGER NOT NULL,
                    counterparty TEXT NOT NULL,
                    counterparty_asset INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    settled_at INTEGER
                )
            """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_swaps_proposer ON swaps(proposer)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_swaps_counterparty ON swaps(counterparty)"
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @track_time(operation_latency.labels(operation="create_swap"))
    def create_swap(
        self, proposer_asset: int, counterparty: str, counterparty_asset: int, caller: str
    ) -> int:
        """
        Propose trading ``proposer_asset`` for ``counterparty_asset``.

        Preconditions are checked in order; the first failure wins.

        Returns:
            The new swap id (ids start at 1)

        Raises:
            SystemPausedError: If swaps are paused
            IdenticalAssetsError: If both asset ids are the same
            NotOwnerError: If caller does not hold proposer_asset
            CounterpartyMismatchError: If counterparty does not hold counterparty_asset
            NotApprovedError: If the coordinator is not proposer_asset's operator
            UnknownAssetError: If either asset does not exist
        """
        validate_object_id(proposer_asset, "proposer_asset")
        validate_object_id(counterparty_asset, "counterparty_asset")
        validate_account_id(counterparty)
        validate_account_id(caller)
        operation = "create_swap"

        with create_span(
            "swap.create",
            {
                "proposer": caller,
                "proposer_asset": proposer_asset,
                "counterparty": counterparty,
                "counterparty_asset": counterparty_asset,
            },
        ):
            with self.store.transaction():
                self._require_running(operation)
                if proposer_asset == counterparty_asset:
                    self._reject(
                        operation,
                        IdenticalAssetsError(
                            f"Cannot swap asset {proposer_asset} for itself"
                        ),
                    )
                if caller != self._holder(proposer_asset, operation):
                    self._reject(
                        operation,
                        NotOwnerError(f"{caller} does not hold asset {proposer_asset}"),
                    )
                # Assets in custody belong to other swaps and cannot be requested
                if (
                    counterparty == self.account
                    or counterparty != self._holder(counterparty_asset, operation)
                ):
                    self._reject(
                        operation,
                        CounterpartyMismatchError(
                            f"{counterparty} does not hold asset {counterparty_asset}"
                        ),
                    )
                if self.registry.authorized_operator(proposer_asset) != self.account:
                    self._reject(
                        operation,
                        NotApprovedError(
                            f"Asset {proposer_asset} has not approved the coordinator"
                        ),
                    )

                swap_id = self.conn.execute(
                    "SELECT COALESCE(MAX(swap_id), 0) + 1 FROM swaps"
                ).fetchone()[0]
                self.conn.execute(
                    """
                    INSERT INTO swaps (swap_id, proposer, proposer_asset, counterparty,
                                       counterparty_asset, state, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        swap_id,
                        caller,
                        proposer_asset,
                        counterparty,
                        counterparty_asset,
                        SwapState.PENDING.value,
                        time.time_ns(),
                    ),
                )

                # Escrow the offered asset; the wanted asset is untouched until accept
                self.registry.transfer(proposer_asset, caller, self.account, self.account)

                self.store.append_fact(
                    FactKind.SWAP_CREATED,
                    swap_id,
                    {
                        "swap_id": swap_id,
                        "proposer": caller,
                        "proposer_asset": proposer_asset,
                        "counterparty": counterparty,
                        "counterparty_asset": counterparty_asset,
                        "state": SwapState.PENDING.value,
                    },
                )
                self.store.after_commit(metrics_collector.record_swap_created)
                self.store.after_commit(self._refresh_pending_gauge)
                self.store.after_commit(
                    logger.info,
                    f"Created swap {swap_id}: {caller} offers asset {proposer_asset} "
                    f"for {counterparty}'s asset {counterparty_asset}",
                )

        return swap_id

    @track_time(operation_latency.labels(operation="accept_swap"))
    def accept_swap(self, swap_id: int, caller: str) -> None:
        """
        Accept a pending swap and settle both assets.

        The counterparty asset is pulled into custody first, so if that pull
        fails nothing has moved. Then the escrowed proposer asset goes to the
        caller and the counterparty asset goes to the proposer.

        Raises:
            SystemPausedError: If swaps are paused
            UnknownSwapError: If the swap does not exist
            SwapNotPendingError: If the swap is already executed or cancelled
            NotCounterpartyError: If caller is not the recorded counterparty
            OwnershipChangedError: If caller no longer holds the wanted asset
            NotApprovedError: If the coordinator is not the wanted asset's operator
        """
        validate_object_id(swap_id, "swap_id")
        validate_account_id(caller)
        operation = "accept_swap"

        with create_span("swap.accept", {"swap_id": swap_id, "caller": caller}):
            with self.store.transaction():
                self._require_running(operation)
                swap = self._require_pending(swap_id, operation)
                if caller != swap.counterparty:
                    self._reject(
                        operation,
                        NotCounterpartyError(
                            f"{caller} is not the counterparty of swap {swap_id}"
                        ),
                    )
                try:
                    holder = self.registry.current_holder(swap.counterparty_asset)
                except UnknownAssetError:
                    # Wanted asset was burned after the proposal
                    holder = None
                if holder != caller:
                    self._reject(
                        operation,
                        OwnershipChangedError(
                            f"{caller} no longer holds asset {swap.counterparty_asset}"
                        ),
                    )
                if self.registry.authorized_operator(swap.counterparty_asset) != self.account:
                    self._reject(
                        operation,
                        NotApprovedError(
                            f"Asset {swap.counterparty_asset} has not approved the coordinator"
                        ),
                    )

                self._settle(swap_id, SwapState.EXECUTED, operation)

                self.registry.transfer(
                    swap.counterparty_asset, caller, self.account, self.account
                )
                self.registry.transfer(
                    swap.proposer_asset, self.account, caller, self.account
                )
                self.registry.transfer(
                    swap.counterparty_asset, self.account, swap.proposer, self.account
                )

                self.store.append_fact(
                    FactKind.SWAP_EXECUTED,
                    swap_id,
                    {"swap_id": swap_id, "state": SwapState.EXECUTED.value},
                )
                self.store.after_commit(
                    metrics_collector.record_swap_settled, SwapState.EXECUTED.value
                )
                self.store.after_commit(self._refresh_pending_gauge)
                self.store.after_commit(
                    logger.info,
                    f"Executed swap {swap_id}: asset {swap.proposer_asset} -> {caller}, "
                    f"asset {swap.counterparty_asset} -> {swap.proposer}",
                )

    @track_time(operation_latency.labels(operation="cancel_swap"))
    def cancel_swap(self, swap_id: int, caller: str) -> None:
        """
        Withdraw a pending swap and return the escrowed asset to its proposer.

        Raises:
            SystemPausedError: If swaps are paused (unless cancel is allowed while paused)
            UnknownSwapError: If the swap does not exist
            SwapNotPendingError: If the swap is already executed or cancelled
            NotProposerError: If caller is not the proposer
        """
        validate_object_id(swap_id, "swap_id")
        validate_account_id(caller)
        operation = "cancel_swap"

        with create_span("swap.cancel", {"swap_id": swap_id, "caller": caller}):
            with self.store.transaction():
                if not self.allow_cancel_when_paused:
                    self._require_running(operation)
                swap = self._require_pending(swap_id, operation)
                if caller != swap.proposer:
                    self._reject(
                        operation,
                        NotProposerError(f"{caller} did not propose swap {swap_id}"),
                    )

                self._settle(swap_id, SwapState.CANCELLED, operation)

                self.registry.transfer(
                    swap.proposer_asset, self.account, swap.proposer, self.account
                )

                self.store.append_fact(
                    FactKind.SWAP_CANCELLED,
                    swap_id,
                    {"swap_id": swap_id, "state": SwapState.CANCELLED.value},
                )
                self.store.after_commit(
                    metrics_collector.record_swap_settled, SwapState.CANCELLED.value
                )
                self.store.after_commit(self._refresh_pending_gauge)
                self.store.after_commit(
                    logger.info,
                    f"Cancelled swap {swap_id}: asset {swap.proposer_asset} returned to {caller}",
                )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        return self.store.get_flag(self.PAUSED_FLAG)

    def pause(self, caller: str) -> None:
        """Halt create/accept (and cancel, unless allowed) swaps (admin only)"""
        self._set_paused(True, caller)

    def unpause(self, caller: str) -> None:
        """Resume swaps (admin only)"""
        self._set_paused(False, caller)

    def _set_paused(self, value: bool, caller: str) -> None:
        validate_account_id(caller)
        operation = "pause" if value else "unpause"
        with self.store.transaction():
            if caller != self.admin:
                self._reject(
                    operation, NotAuthorizedError(f"{caller} is not the administrator")
                )
            if self.is_paused == value:
                logger.debug(f"Swaps already {'paused' if value else 'running'}")
                return
            self.store.set_flag(self.PAUSED_FLAG, value)
            self.store.append_fact(
                FactKind.PAUSE_CHANGED,
                0,
                {"scope": "swaps", "paused": value, "by": caller},
            )
            self.store.after_commit(metrics_collector.set_paused, "swaps", value)
            self.store.after_commit(
                logger.warning, f"Swaps {'paused' if value else 'resumed'} by {caller}"
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_swap(self, swap_id: int) -> Swap:
        """
        Get a swap record in any state.

        Raises:
            UnknownSwapError: If the swap does not exist (including id 0)
        """
        validate_object_id(swap_id, "swap_id")
        with self.lock:
            return self._require_swap(swap_id)

    def swaps_for(self, account: str, state: Optional[SwapState] = None) -> List[Swap]:
        """
        Get swaps an account proposed or is the counterparty of.

        Args:
            account: Proposer or counterparty
            state: Only return swaps in this state (None for all)
        """
        validate_account_id(account)
        query = """
            SELECT swap_id, proposer, proposer_asset, counterparty,
                   counterparty_asset, state, created_at, settled_at
            FROM swaps
            WHERE (proposer = ? OR counterparty = ?)
        """
        params = [account, account]
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        query += " ORDER BY swap_id ASC"

        with self.lock:
            rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_swap(row) for row in rows]

    def pending_swaps(self) -> List[Swap]:
        """All swaps currently holding an escrowed asset"""
        with self.lock:
            rows = self.conn.execute(
                """
                SELECT swap_id, proposer, proposer_asset, counterparty,
                       counterparty_asset, state, created_at, settled_at
                FROM swaps
                WHERE state = ?
                ORDER BY swap_id ASC
            """,
                (SwapState.PENDING.value,),
            ).fetchall()
        return [self._row_to_swap(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _refresh_pending_gauge(self) -> None:
        # Read and set under the lock so the last refresh sees the latest commit
        with self.lock:
            count = self.conn.execute(
                "SELECT COUNT(*) FROM swaps WHERE state = ?", (SwapState.PENDING.value,)
            ).fetchone()[0]
            metrics_collector.set_pending_swaps(count)

    def _on_custody_received(
        self, asset_id: int, from_account: str, to_account: str, caller: str
    ) -> None:
        if caller != self.account:
            raise NotAuthorizedError(
                f"Coordinator custody does not accept direct transfers (asset {asset_id})"
            )

    def _settle(self, swap_id: int, state: SwapState, operation: str) -> None:
        """Flip PENDING to a terminal state before any asset moves."""
        cursor = self.conn.execute(
            "UPDATE swaps SET state = ?, settled_at = ? WHERE swap_id = ? AND state = ?",
            (state.value, time.time_ns(), swap_id, SwapState.PENDING.value),
        )
        if cursor.rowcount != 1:
            self._reject(
                operation, SwapNotPendingError(f"Swap {swap_id} is no longer pending")
            )

    def _require_running(self, operation: str) -> None:
        if self.is_paused:
            self._reject(operation, SystemPausedError("Swaps are paused"))

    def _require_pending(self, swap_id: int, operation: str) -> Swap:
        swap = self._require_swap(swap_id, operation)
        if swap.state is not SwapState.PENDING:
            self._reject(
                operation,
                SwapNotPendingError(f"Swap {swap_id} is {swap.state.value}, not PENDING"),
            )
        return swap

    def _require_swap(self, swap_id: int, operation: Optional[str] = None) -> Swap:
        row = self.conn.execute(
            """
            SELECT swap_id, proposer, proposer_asset, counterparty,
                   counterparty_asset, state, created_at, settled_at
            FROM swaps
            WHERE swap_id = ?
        """,
            (swap_id,),
        ).fetchone()
        if not row:
            error = UnknownSwapError(f"Swap not found: {swap_id}")
            if operation:
                self._reject(operation, error)
            raise error
        return self._row_to_swap(row)

    def _holder(self, asset_id: int, operation: str) -> str:
        try:
            return self.registry.current_holder(asset_id)
        except UnknownAssetError as e:
            self._reject(operation, e)

    @staticmethod
    def _row_to_swap(row) -> Swap:
        return Swap(
            swap_id=row[0],
            proposer=row[1],
            proposer_asset=row[2],
            counterparty=row[3],
            counterparty_asset=row[4],
            state=SwapState(row[5]),
            created_at=row[6],
            settled_at=row[7],
        )

    def _reject(self, operation: str, error: SwapLedgerError) -> None:
        metrics_collector.record_rejection(operation, error.kind)
        logger.debug(f"Rejected {operation}: {error}")
        raise error
