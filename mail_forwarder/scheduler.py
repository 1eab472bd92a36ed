"""Drive the message processor once at startup and then on a fixed interval."""

from __future__ import annotations

import asyncio
import logging

from .imap_client import MailboxClient, MailboxError
from .processor import MessageProcessor

logger = logging.getLogger(__name__)


class PollScheduler:
    """Run passes without overlap until shutdown is requested.

    The pass lock is the overlap guard: a trigger that fires while a pass is
    still running is dropped, never queued.
    """

    def __init__(
        self,
        processor: MessageProcessor,
        mailbox: MailboxClient,
        *,
        interval: float,
        daemon: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.processor = processor
        self.mailbox = mailbox
        self.interval = interval
        self.daemon = daemon
        self._pass_lock = asyncio.Lock()
        self._shutdown = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._pass_lock.locked()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Stop scheduling new passes; an in-flight pass is allowed to finish."""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
            self._shutdown.set()

    async def run(self) -> int:
        """Connect, run the startup pass and, in daemon mode, keep polling. Returns the exit status."""
        try:
            await self.mailbox.connect()
        except MailboxError as exc:
            logger.error("IMAP error: unable to open source mailbox session: %s", exc)
            return 1

        startup_ok = await self._startup_pass()
        if self.daemon:
            if not startup_ok:
                logger.warning("Startup pass failed; continuing in daemon mode")
            await self._serve()
            await self._close()
            return 0

        await self._close()
        if startup_ok:
            logger.info("Mail forwarding completed successfully.")
            return 0
        return 1

    async def trigger(self) -> bool:
        """Run one scheduled pass. Returns False if the pass was skipped."""
        if self.shutdown_requested:
            return False
        if self._pass_lock.locked():
            logger.warning("Previous pass still running; skipping this scheduled run")
            return False
        async with self._pass_lock:
            try:
                await self.processor.run_pass()
            except Exception:
                logger.exception("Scheduled pass failed")
        return True

    async def _startup_pass(self) -> bool:
        async with self._pass_lock:
            try:
                await self.processor.run_pass()
            except Exception:
                logger.exception("Startup pass failed")
                return False
        return True

    async def _serve(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        logger.info("Daemon mode: polling every %s seconds", self.interval)

        while not self.shutdown_requested:
            delay = max(0.0, next_tick - loop.time())
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            except asyncio.TimeoutError:
                now = loop.time()
                while next_tick <= now:
                    next_tick += self.interval
                self._spawn()

        if self._tasks:
            logger.info("Waiting for the in-flight pass to finish")
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self) -> None:
        task = asyncio.create_task(self.trigger())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _close(self) -> None:
        try:
            await self.mailbox.logout()
        except MailboxError as exc:
            logger.warning("Error while closing mailbox session: %s", exc)
        else:
            logger.info("Mailbox session closed")
