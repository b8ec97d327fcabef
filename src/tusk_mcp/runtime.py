"""Process-wide resources and their teardown."""

import asyncio
import logging
import signal
from typing import Optional

from .database.adapters.base import BaseAdapter
from .tunnel import Tunnel

logger = logging.getLogger("tusk_mcp.runtime")

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Runtime:
    """Owns the database adapter and the optional SSH tunnel.

    ``close()`` releases the pool before the tunnel so that no running query
    loses its transport, and is safe to call any number of times.
    """

    def __init__(self, adapter: Optional[BaseAdapter] = None, tunnel: Optional[Tunnel] = None):
        self.adapter = adapter
        self.tunnel = tunnel
        self._lock = asyncio.Lock()
        self._closed = False
        self._shutdown_requested = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True

            if self.adapter is not None:
                try:
                    await self.adapter.close()
                except Exception:
                    logger.exception("Error closing database pool")
            if self.tunnel is not None:
                try:
                    await self.tunnel.close()
                except Exception:
                    logger.exception("Error closing SSH tunnel")
            logger.info("Shutdown complete")

    def request_shutdown(self, task: asyncio.Task, signame: str) -> None:
        """Cancel the serving task on the first signal; ignore the rest."""
        if self._shutdown_requested:
            logger.debug(f"Ignoring repeated {signame}; shutdown already in progress")
            return
        self._shutdown_requested = True
        logger.info(f"Received {signame}, shutting down")
        task.cancel()

    def install_signal_handlers(self, task: asyncio.Task) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, task, sig.name)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")
