"""
Discovery dispatching: one watcher task per discovered device.
"""

import asyncio
import itertools
from typing import AsyncIterator, Callable, Dict, Optional

from .adapter import DeviceAppeared, DeviceEventType, DeviceUnavailableError


class WatcherRegistry:
    """
    Tracks running watcher tasks keyed by a monotonic watcher id.

    Several watchers may exist for the same address (a device reported as
    added twice gets a second watcher). With ``replace_duplicates`` the older
    watcher for an address is cancelled when a new one is spawned.
    """

    def __init__(self, watcher_factory: Callable[[int, object], object], logger,
                 replace_duplicates: bool = False):
        """
        Initialize registry.

        Args:
            watcher_factory: Callable building a watcher from (watcher_id, handle)
            logger: Logger instance
            replace_duplicates: Cancel the previous watcher of an address on respawn
        """
        self.watcher_factory = watcher_factory
        self.logger = logger
        self.replace_duplicates = replace_duplicates
        self._ids = itertools.count(1)
        self._tasks: Dict[int, asyncio.Task] = {}
        self._addresses: Dict[int, str] = {}
        self.spawned = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def active_addresses(self) -> Dict[int, str]:
        return dict(self._addresses)

    def spawn(self, handle) -> int:
        """Start a watcher for ``handle`` and return its id."""
        if self.replace_duplicates:
            for watcher_id, address in list(self._addresses.items()):
                if address == handle.address:
                    self.logger.debug(f"Replacing watcher {watcher_id} for {address}")
                    self._tasks[watcher_id].cancel()

        watcher_id = next(self._ids)
        watcher = self.watcher_factory(watcher_id, handle)
        task = asyncio.ensure_future(watcher.run())
        self._tasks[watcher_id] = task
        self._addresses[watcher_id] = handle.address
        self.spawned += 1
        task.add_done_callback(lambda t, wid=watcher_id: self._on_done(wid, t))
        self.logger.info(f"Watching {handle.address} (watcher {watcher_id}, {len(self._tasks)} active)")
        return watcher_id

    def _on_done(self, watcher_id: int, task: asyncio.Task):
        self._tasks.pop(watcher_id, None)
        address = self._addresses.pop(watcher_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Watcher {watcher_id} for {address} failed: {error!r}")

    async def join(self, timeout: Optional[float] = None):
        """
        Wait for all watchers to finish; cancel those still running after ``timeout``.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            self.logger.warning(f"Cancelling {len(pending)} watchers still running after {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)


class DiscoveryDispatcher:
    """
    Consumes device-appeared events and spawns a watcher for each added device.
    A device that vanishes before its handle is created is logged and skipped.
    """

    def __init__(self, adapter, spawn: Callable[[object], int], logger):
        self.adapter = adapter
        self.spawn = spawn
        self.logger = logger
        self.devices_added = 0
        self.devices_skipped = 0

    async def run(self, events: AsyncIterator[DeviceAppeared]):
        """Dispatch until the discovery stream ends."""
        async for event in events:
            if event.type is not DeviceEventType.ADDED:
                self.logger.debug(f"Device {event.path} {event.type.value}")
                continue

            try:
                handle = await self.adapter.get_device(event.path)
            except DeviceUnavailableError as e:
                self.devices_skipped += 1
                self.logger.warning(f"Can't instantiate {event.path}: {e}")
                continue

            if handle is None:
                self.devices_skipped += 1
                self.logger.warning(f"Can't instantiate {event.path}: not found")
                continue

            self.devices_added += 1
            self.spawn(handle)

        self.logger.info("Discovery stream ended")
