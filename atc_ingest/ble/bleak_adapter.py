"""
Bluetooth Low Energy adapter built on bleak.

Turns bleak's single detection callback into the discovery stream and
per-device property streams the pipeline consumes. A device is "added" the
first time it is heard and "removed" once it has been silent for longer than
the configured expiry, after which its streams close.
"""

import asyncio
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from .adapter import (
    SERVICE_DATA_PROPERTY,
    DeviceAppeared,
    DeviceEventType,
    DeviceUnavailableError,
    DiscoveryFilter,
    FatalAdapterError,
    PropertyChanged,
    SubscriptionError,
)


_CLOSED = object()


class _DeviceState:
    """Bookkeeping for one known device."""

    def __init__(self, address: str, last_seen: float):
        self.address = address
        self.last_seen = last_seen
        self.last_service_data: Optional[Dict[str, bytes]] = None
        self.subscribers: List[asyncio.Queue] = []


class BleakDeviceHandle:
    """Handle to a device known to a ``BleakAdapter``."""

    def __init__(self, adapter: 'BleakAdapter', address: str):
        self._adapter = adapter
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    async def watch_properties(self) -> AsyncIterator[PropertyChanged]:
        queue = self._adapter._subscribe(self._address)
        return self._adapter._stream(self._address, queue)

    def __repr__(self):
        return f"BleakDeviceHandle(address='{self._address}')"


class BleakAdapter:
    """
    Advertisement event source backed by a continuously running ``BleakScanner``.
    """

    def __init__(self,
                 logger,
                 adapter_name: str = "auto",
                 device_expiry: float = 300.0,
                 scanner_factory: Callable[..., Any] = BleakScanner,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize adapter.

        Args:
            logger: Logger instance
            adapter_name: Controller to use (e.g. "hci0"), "auto" for the default
            device_expiry: Seconds of silence before a device is forgotten, 0 disables
            scanner_factory: Scanner class, replaced in tests
            clock: Monotonic clock used for expiry
        """
        self.logger = logger
        self.adapter_name = adapter_name
        self.device_expiry = device_expiry
        self.scanner_factory = scanner_factory
        self.clock = clock

        self._scanner = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._devices: Dict[str, _DeviceState] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._closed = False
        self.advertisements_seen = 0

    async def start_discovery(self, discovery_filter: DiscoveryFilter):
        """
        Start the scanner.

        Raises:
            FatalAdapterError: If no adapter is available or scanning cannot start
        """
        kwargs: Dict[str, Any] = {
            "detection_callback": self._detection_callback,
            "bluez": {"filters": {"Transport": discovery_filter.transport}},
        }
        if self.adapter_name != "auto":
            kwargs["adapter"] = self.adapter_name

        try:
            self._scanner = self.scanner_factory(**kwargs)
            await self._scanner.start()
        except Exception as e:
            raise FatalAdapterError(f"Can't start BLE discovery on adapter '{self.adapter_name}': {e}") from e

        self.logger.info(f"BLE discovery started (adapter: {self.adapter_name}, transport: {discovery_filter.transport})")

        if self.device_expiry > 0:
            self._sweep_task = asyncio.ensure_future(self._sweep_loop())

    async def discover(self) -> AsyncIterator[DeviceAppeared]:
        """Yield discovery events until ``cancel`` is called. Single consumer only."""
        while True:
            event = await self._events.get()
            if event is _CLOSED:
                return
            yield event

    async def get_device(self, path: str) -> BleakDeviceHandle:
        if self._closed or path not in self._devices:
            raise DeviceUnavailableError(f"{path} is no longer known to the adapter")
        return BleakDeviceHandle(self, path)

    def _detection_callback(self, device: BLEDevice, advertisement_data: AdvertisementData):
        if self._closed:
            return

        self.advertisements_seen += 1
        address = device.address
        state = self._devices.get(address)
        if state is None:
            state = _DeviceState(address, self.clock())
            self._devices[address] = state
            self.logger.debug(f"Device added: {address} ({device.name})")
            self._events.put_nowait(DeviceAppeared(DeviceEventType.ADDED, address))

        state.last_seen = self.clock()

        if advertisement_data.service_data:
            service_data = dict(advertisement_data.service_data)
            state.last_service_data = service_data
            event = PropertyChanged(SERVICE_DATA_PROPERTY, service_data)
            for queue in state.subscribers:
                queue.put_nowait(event)

    def _subscribe(self, address: str) -> asyncio.Queue:
        state = self._devices.get(address)
        if self._closed or state is None:
            raise SubscriptionError(f"{address} is no longer known to the adapter")

        queue: asyncio.Queue = asyncio.Queue()
        if state.last_service_data is not None:
            queue.put_nowait(PropertyChanged(SERVICE_DATA_PROPERTY, state.last_service_data))
        state.subscribers.append(queue)
        return queue

    def _unsubscribe(self, address: str, queue: asyncio.Queue):
        state = self._devices.get(address)
        if state is not None and queue in state.subscribers:
            state.subscribers.remove(queue)

    async def _stream(self, address: str, queue: asyncio.Queue) -> AsyncIterator[PropertyChanged]:
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
        finally:
            self._unsubscribe(address, queue)

    def _expire(self, address: str):
        state = self._devices.pop(address, None)
        if state is None:
            return
        for queue in state.subscribers:
            queue.put_nowait(_CLOSED)
        state.subscribers.clear()
        self.logger.debug(f"Device removed: {address} (silent for {self.device_expiry}s)")
        self._events.put_nowait(DeviceAppeared(DeviceEventType.REMOVED, address))

    def expire_stale_devices(self) -> int:
        """Forget devices silent for longer than the expiry; returns how many."""
        now = self.clock()
        stale = [a for a, s in self._devices.items() if now - s.last_seen > self.device_expiry]
        for address in stale:
            self._expire(address)
        return len(stale)

    async def _sweep_loop(self):
        interval = min(max(self.device_expiry / 4, 1.0), 30.0)
        while not self._closed:
            await asyncio.sleep(interval)
            self.expire_stale_devices()

    async def cancel(self):
        """Stop scanning and close the discovery stream and every device stream."""
        if self._closed:
            return
        self._closed = True

        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass

        if self._scanner is not None:
            try:
                await self._scanner.stop()
            except Exception as e:
                self.logger.warning(f"Error stopping scanner: {e}")
            self.logger.info("BLE discovery stopped")

        self._events.put_nowait(_CLOSED)
        for state in self._devices.values():
            for queue in state.subscribers:
                queue.put_nowait(_CLOSED)
            state.subscribers.clear()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "devices_known": len(self._devices),
            "subscriptions": sum(len(s.subscribers) for s in self._devices.values()),
            "advertisements_seen": self.advertisements_seen,
        }
