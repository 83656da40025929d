# e2echat/poller.py
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Union

from e2echat.common.errors import DirectoryUnavailable, PeerUnreachable
from e2echat.common.protocol import OpenedMessage

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[List[OpenedMessage]]]
OnUpdate = Callable[[List[OpenedMessage]], Union[None, Awaitable[None]]]
Reconcile = Callable[[str], Awaitable[bool]]


class ConversationPoller:
    """
    Re-fetch one conversation on a fixed interval.

    Start when the conversation gets focus, stop when it goes away:

        async with client.poll("bob", show) as poller:
            ...

    ``on_update`` runs only when the opened conversation differs from the
    previous tick. Directory outages and an unreachable peer are logged and
    retried on the next tick.
    """

    def __init__(
        self,
        peer: str,
        fetch: Fetch,
        on_update: OnUpdate,
        interval: float = 3.0,
        reconcile: Optional[Reconcile] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.peer = peer
        self.interval = interval
        self._fetch = fetch
        self._on_update = on_update
        self._reconcile = reconcile
        self._task: Optional[asyncio.Task] = None
        self._last: Optional[List[OpenedMessage]] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ConversationPoller":
        if not self.running:
            self._task = asyncio.create_task(self._run(), name=f"poll-{self.peer}")
        return self

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("poller for %s had already failed", self.peer)

    async def __aenter__(self) -> "ConversationPoller":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def poll_once(self) -> Optional[List[OpenedMessage]]:
        """One tick. Returns the conversation, or None if the tick failed."""
        self.ticks += 1
        try:
            messages = await self._fetch(self.peer)
        except (DirectoryUnavailable, PeerUnreachable) as e:
            logger.warning("poll for %s failed: %s", self.peer, e)
            return None

        if self._reconcile is not None and any(m.status != "ok" for m in messages):
            try:
                if await self._reconcile(self.peer):
                    messages = await self._fetch(self.peer)
            except (DirectoryUnavailable, PeerUnreachable) as e:
                logger.warning("reconcile with %s failed: %s", self.peer, e)

        if messages != self._last:
            self._last = messages
            result = self._on_update(messages)
            if asyncio.iscoroutine(result):
                await result
        return messages

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                # one bad tick (render error, corrupt peer key) must not end polling
                logger.exception("poll tick for %s failed", self.peer)
            await asyncio.sleep(self.interval)
