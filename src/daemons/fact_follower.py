"""Fact follower daemon that keeps read models in step with the ledger.

Periodically reads facts newer than its offset from a fact source and folds
them into a LedgerView, then notifies registered callbacks.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from trading.facts import Fact
from trading.views import FactSource, LedgerView

logger = logging.getLogger(__name__)


class FactFollower:
    """
    Background daemon that tails the fact log into a LedgerView.

    Resumes from the view's offset, so a follower started on a fresh view
    replays the whole log first and then stays current.
    """

    def __init__(
        self,
        source: FactSource,
        view: Optional[LedgerView] = None,
        poll_interval_seconds: float = 0.5,
        batch_size: int = 500,
    ):
        """
        Initialize fact follower.

        Args:
            source: Fact source to read from (e.g. LedgerStore)
            view: View to keep current (a fresh LedgerView if None)
            poll_interval_seconds: How often to poll for new facts
            batch_size: Maximum facts read per poll
        """
        self.source = source
        self.view = view or LedgerView()
        self.poll_interval_seconds = poll_interval_seconds
        self.batch_size = batch_size
        self.running = False
        self.facts_applied = 0
        self._task: Optional[asyncio.Task] = None

        self.on_fact_callbacks: List[Callable[[Fact], None]] = []

    async def start(self):
        """Start the follower daemon."""
        if self.running:
            logger.warning("Fact follower already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._follow_loop())
        logger.info(
            f"Started fact follower at offset {self.view.offset} "
            f"with {self.poll_interval_seconds}s interval"
        )

    async def stop(self):
        """Stop the follower daemon."""
        if not self.running:
            return

        self.running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        logger.info(f"Stopped fact follower at offset {self.view.offset}")

    async def _follow_loop(self):
        """Main polling loop."""
        try:
            while self.running:
                self.poll_once()
                await asyncio.sleep(self.poll_interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Fact follower loop cancelled")
        except Exception as e:
            logger.error(f"Error in fact follower loop: {e}", exc_info=True)
            self.running = False

    def poll_once(self) -> int:
        """
        Apply one batch of new facts.

        Returns:
            Number of facts read
        """
        batch = self.source.facts_since(self.view.offset, limit=self.batch_size)
        for fact in batch:
            self.view.apply(fact)
            for callback in self.on_fact_callbacks:
                try:
                    callback(fact)
                except Exception as e:
                    logger.error(
                        f"Fact callback failed on {fact.kind.value} #{fact.seq}: {e}",
                        exc_info=True,
                    )
        self.facts_applied += len(batch)
        if batch:
            logger.debug(f"Applied {len(batch)} fact(s), offset now {self.view.offset}")
        return len(batch)

    def get_status(self) -> dict:
        """
        Get follower status.

        Returns:
            Status dictionary
        """
        return {
            "running": self.running,
            "poll_interval_seconds": self.poll_interval_seconds,
            "offset": self.view.offset,
            "facts_applied": self.facts_applied,
            "pending_swaps": len(self.view.swap_book.get_swaps_by_state("PENDING")),
        }
