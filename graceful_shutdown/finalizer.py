"""Runs the user cleanup callback, then terminates the process."""

import asyncio
import concurrent.futures
import inspect
import logging
import sys
from typing import Any, Awaitable, Callable, Optional, Union

from graceful_shutdown.metrics import CALLBACK_FAILURES_TOTAL

logger = logging.getLogger(__name__)

ShutdownCallback = Callable[[], Union[None, Awaitable[Any], concurrent.futures.Future]]


class Finalizer:
    """Last step of every shutdown path.

    The callback may return nothing, an awaitable, or a
    ``concurrent.futures.Future``; the finalizer waits for it to settle.
    Success and failure both end in ``exit_func(exit_code)``.
    """

    def __init__(
        self,
        callback: Optional[ShutdownCallback] = None,
        exit_code: int = 1,
        exit_func: Callable[[int], Any] = sys.exit,
    ) -> None:
        """
        Initialize the finalizer.

        Args:
            callback: Optional zero-argument cleanup function
            exit_code: Process exit status, 1 by default even after a clean drain
            exit_func: Called with exit_code to terminate the process
        """
        self._callback = callback
        self.exit_code = exit_code
        self._exit = exit_func

    async def finalize(self) -> None:
        """Run the callback and exit."""
        if self._callback is not None:
            await self._run_callback()

        logger.info("Exiting process", extra={"exit_code": self.exit_code})
        self._exit(self.exit_code)

    async def _run_callback(self) -> None:
        try:
            result = self._callback()
            if isinstance(result, concurrent.futures.Future):
                result = asyncio.wrap_future(result)
            if inspect.isawaitable(result):
                await result
        except (Exception, asyncio.CancelledError) as exc:
            CALLBACK_FAILURES_TOTAL.inc()
            logger.warning(f"Shutdown callback failed: {exc!r}", exc_info=True)
