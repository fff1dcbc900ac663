"""
Per-device watcher turning property-change notifications into readings.
"""

import asyncio
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from .adapter import SERVICE_DATA_PROPERTY, PropertyChanged, TransientDeviceError
from .decoder import PVVX_CUSTOM, AdvertisementLayout, DecodeError, Reading, decode


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WatcherState(Enum):
    """Lifecycle of a device watcher."""
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSED = "closed"


class DeviceWatcher:
    """
    Streams decoded readings from one peripheral onto the shared queue.

    A malformed advertisement is logged and skipped; the watcher only ends
    when its event stream closes or the shutdown event is set. Pushing onto a
    full queue suspends the watcher instead of dropping the reading.
    """

    def __init__(self,
                 watcher_id: int,
                 handle,
                 readings: asyncio.Queue,
                 shutdown: asyncio.Event,
                 logger,
                 performance_monitor=None,
                 service_data_prefix: str = "0000181a",
                 layout: AdvertisementLayout = PVVX_CUSTOM,
                 clock: Callable[[], datetime] = utc_now):
        self.watcher_id = watcher_id
        self.handle = handle
        self.readings = readings
        self.shutdown = shutdown
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.service_data_prefix = service_data_prefix.lower()
        self.layout = layout
        self.clock = clock

        self.state = WatcherState.SUBSCRIBING
        self.readings_emitted = 0
        self.decode_errors = 0

    @property
    def address(self) -> str:
        return self.handle.address

    def _record(self, metric: str):
        if self.performance_monitor is not None:
            self.performance_monitor.record_metric(metric, 1)

    async def run(self):
        """Subscribe, stream until the source closes or shutdown, then release."""
        try:
            events = await self.handle.watch_properties()
        except TransientDeviceError as e:
            self.logger.warning(f"Can't watch {self.address}: {e}")
            self.state = WatcherState.CLOSED
            return

        self.state = WatcherState.STREAMING
        self.logger.debug(f"Watcher {self.watcher_id} streaming {self.address}")

        try:
            while not self.shutdown.is_set():
                event = await self._next_event(events)
                if event is None:
                    break
                await self.handle_event(event)
        finally:
            self.state = WatcherState.CLOSED
            aclose = getattr(events, 'aclose', None)
            if aclose is not None:
                await aclose()
            self.logger.debug(
                f"Watcher {self.watcher_id} closed for {self.address} "
                f"({self.readings_emitted} readings, {self.decode_errors} decode errors)"
            )

    async def _next_event(self, events: AsyncIterator[PropertyChanged]) -> Optional[PropertyChanged]:
        """Wait for the next event; None once the stream ends or shutdown is set."""
        next_event = asyncio.ensure_future(events.__anext__())
        stop = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({next_event, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            next_event.cancel()
            await asyncio.wait({next_event})
            raise
        finally:
            stop.cancel()

        if not next_event.done():
            next_event.cancel()
            await asyncio.wait({next_event})
            return None

        try:
            return next_event.result()
        except StopAsyncIteration:
            return None
        except TransientDeviceError as e:
            self.logger.warning(f"Lost {self.address}: {e}")
            return None

    async def handle_event(self, event: PropertyChanged):
        """Decode every matching service-data entry of one event."""
        if event.name != SERVICE_DATA_PROPERTY:
            return

        if not isinstance(event.value, Mapping):
            self.logger.warning(
                f"Unknown ServiceData type {type(event.value).__name__} from {self.address} (expecting a mapping)"
            )
            return

        for key, value in event.value.items():
            if not str(key).lower().startswith(self.service_data_prefix):
                continue

            reading = self._decode(value)
            if reading is not None:
                await self.readings.put(reading)
                self.readings_emitted += 1
                self._record("readings_decoded")

    def _decode(self, value) -> Optional[Reading]:
        try:
            return decode(value, self.layout, observed_at=self.clock())
        except DecodeError as e:
            self.decode_errors += 1
            self._record("decode_errors")
            self.logger.warning(f"Can't decode service data from {self.address}: {e}")
            return None
