"""
Failure kinds for the asset registry and swap coordinator.

Every error is a caller-recoverable precondition violation: it is raised
before any state is touched, so a failed call leaves no trace in the ledger.
Each class carries a stable ``kind`` string that crosses process boundaries
(fact replay, CLI output) unchanged.
"""


class SwapLedgerError(Exception):
    """Base class for all ledger failures"""

    kind = "SwapLedgerError"


class StandingError(SwapLedgerError):
    """Caller lacks standing for the requested mutation"""


class ConsistencyError(SwapLedgerError):
    """Proposal or acceptance consistency check failed"""


class UnknownAssetError(SwapLedgerError):
    """Raised when an asset id was never created or has been burned"""

    kind = "UnknownAsset"


class UnknownSwapError(SwapLedgerError):
    """Raised when a swap id was never allocated"""

    kind = "UnknownSwap"


class NotHolderError(StandingError):
    """Raised when the caller (or stated sender) is not the asset's holder"""

    kind = "NotHolder"


class NotOwnerError(StandingError):
    """Raised when a swap proposer does not hold the offered asset"""

    kind = "NotOwner"


class NotProposerError(StandingError):
    """Raised when anyone but the proposer tries to cancel a swap"""

    kind = "NotProposer"


class NotCounterpartyError(StandingError):
    """Raised when anyone but the recorded counterparty tries to accept"""

    kind = "NotCounterparty"


class NotAuthorizedError(StandingError):
    """Raised when the caller is neither holder nor operator, or not the admin"""

    kind = "NotAuthorized"


class NotApprovedError(SwapLedgerError):
    """Raised when the coordinator is not the asset's authorized operator"""

    kind = "NotApproved"


class IdenticalAssetsError(ConsistencyError):
    """Raised when a swap offers an asset in exchange for itself"""

    kind = "IdenticalAssets"


class CounterpartyMismatchError(ConsistencyError):
    """Raised when the named counterparty does not hold the wanted asset"""

    kind = "CounterpartyMismatch"


class OwnershipChangedError(ConsistencyError):
    """Raised when the counterparty no longer holds the wanted asset"""

    kind = "OwnershipChanged"


class SwapNotPendingError(SwapLedgerError):
    """Raised on any transition out of a terminal swap state"""

    kind = "SwapNotPending"


class SystemPausedError(SwapLedgerError):
    """Raised while an administrative pause is in effect"""

    kind = "SystemPaused"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        UnknownAssetError,
        UnknownSwapError,
        NotHolderError,
        NotOwnerError,
        NotProposerError,
        NotCounterpartyError,
        NotAuthorizedError,
        NotApprovedError,
        IdenticalAssetsError,
        CounterpartyMismatchError,
        OwnershipChangedError,
        SwapNotPendingError,
        SystemPausedError,
    )
}
