"""
kudos.services.scheduler — Background default sweep
====================================================

Runs :func:`loan_service.mark_defaults` every ``interval`` seconds on the
API's event loop.  The sweep itself is synchronous database work and is
shipped to a thread with :func:`run_db`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from kudos.database.engine import run_db
from kudos.services import loan_service

if TYPE_CHECKING:
    from kudos.database.models import Loan
    from kudos.services.ledger_service import LedgerStore
    from kudos.services.notification_service import Notifier

logger = logging.getLogger(__name__)


class DefaultSweeper:
    """Periodic loan-default sweep.

    - ``sweep_once()`` can be awaited directly (admin endpoint, tests).
    - ``start()`` schedules the loop; ``stop()`` cancels it.
    """

    def __init__(
        self,
        store: LedgerStore,
        interval: float = 300,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.interval = interval
        self.notifier = notifier
        self.runs = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> list[Loan]:
        loans = await run_db(
            loan_service.mark_defaults, self.store, notifier=self.notifier
        )
        self.runs += 1
        return loans

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background sweep task."""
        if self._task is not None:
            return
        if self.interval <= 0:
            logger.info("Default sweep disabled (interval=%s)", self.interval)
            return
        loop = loop or asyncio.get_running_loop()

        async def _sweep_loop() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.sweep_once()
                except Exception:
                    logger.exception("Default sweep error")

        self._task = loop.create_task(_sweep_loop(), name="default-sweep")
        logger.info("Default sweep scheduled every %.0f s", self.interval)

    def stop(self) -> None:
        """Cancel the sweep task."""
        if self._task:
            self._task.cancel()
            self._task = None
