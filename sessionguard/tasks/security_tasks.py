import asyncio
from typing import Optional

import structlog

from sessionguard.middleware.token_blocklist import TokenBlocklist

logger = structlog.get_logger()


class BlocklistSweeper:
    """
    Periodically purge expired blocklist entries to keep memory bounded.
    Started on application startup, one task per application.
    """

    def __init__(self, blocklist: TokenBlocklist, interval: float):
        self.blocklist = blocklist
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> int:
        try:
            return self.blocklist.purge_expired()
        except Exception:
            logger.exception("token_blocklist_sweep_failed")
            return 0

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("token_blocklist_sweeper_started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("token_blocklist_sweeper_stopped")
