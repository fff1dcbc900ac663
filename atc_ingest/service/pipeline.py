"""
Ingestion pipeline: discovery -> device watchers -> name resolution -> point writer.
"""

import asyncio
from typing import Any, Dict, Optional

from ..ble.adapter import DiscoveryFilter
from ..ble.decoder import PVVX_CUSTOM, AdvertisementLayout, Reading
from ..ble.discovery import DiscoveryDispatcher, WatcherRegistry
from ..ble.watcher import DeviceWatcher
from ..influxdb.client import reading_to_data_point


_STOP = object()


class IngestionPipeline:
    """
    Wires discovery, watchers, the name resolver and the point writer together.

    The pipeline owns the bounded reading queue shared by all watchers (many
    producers) and the single consumer. ``run`` returns once the shutdown
    event has been set and teardown has completed: discovery cancelled,
    watchers joined, every queued reading written, writer flushed and closed.
    """

    def __init__(self,
                 adapter,
                 resolver,
                 writer,
                 logger,
                 performance_monitor=None,
                 queue_size: int = 64,
                 transport: str = "le",
                 service_data_prefix: str = "0000181a",
                 layout: AdvertisementLayout = PVVX_CUSTOM,
                 measurement: str = "temperature",
                 name_tag: str = "room",
                 shutdown_timeout: float = 10.0,
                 replace_duplicate_watchers: bool = False):
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.adapter = adapter
        self.resolver = resolver
        self.writer = writer
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.queue_size = queue_size
        self.transport = transport
        self.service_data_prefix = service_data_prefix
        self.layout = layout
        self.measurement = measurement
        self.name_tag = name_tag
        self.shutdown_timeout = shutdown_timeout

        self.readings: Optional[asyncio.Queue] = None
        self.registry = WatcherRegistry(self._create_watcher, logger, replace_duplicate_watchers)
        self.dispatcher = DiscoveryDispatcher(adapter, self.registry.spawn, logger)
        self._watcher_shutdown: Optional[asyncio.Event] = None

        self.readings_received = 0
        self.readings_written = 0
        self.write_errors = 0

    def _create_watcher(self, watcher_id: int, handle) -> DeviceWatcher:
        return DeviceWatcher(
            watcher_id,
            handle,
            self.readings,
            self._watcher_shutdown,
            self.logger,
            performance_monitor=self.performance_monitor,
            service_data_prefix=self.service_data_prefix,
            layout=self.layout,
        )

    async def run(self, shutdown: asyncio.Event):
        """
        Run until ``shutdown`` is set.

        Raises:
            FatalAdapterError: If discovery cannot be started
        """
        self.readings = asyncio.Queue(maxsize=self.queue_size)
        self._watcher_shutdown = shutdown

        await self.adapter.start_discovery(DiscoveryFilter(transport=self.transport))

        consumer_task = asyncio.ensure_future(self._consume())
        dispatch_task = asyncio.ensure_future(self.dispatcher.run(self.adapter.discover()))
        self.logger.info("Ingestion pipeline started")

        try:
            await shutdown.wait()
            self.logger.info("Shutting down ingestion pipeline...")
        finally:
            await self._teardown(dispatch_task, consumer_task)

    async def _teardown(self, dispatch_task: asyncio.Task, consumer_task: asyncio.Task):
        await self.adapter.cancel()

        try:
            await asyncio.wait_for(dispatch_task, timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Discovery dispatcher did not stop in time")
        except Exception as e:
            self.logger.error(f"Discovery dispatcher failed: {e!r}")

        await self.registry.join(timeout=self.shutdown_timeout)

        # Every watcher has ended, so nothing can be queued behind the marker.
        await self.readings.put(_STOP)
        await consumer_task

        try:
            self.writer.flush()
        finally:
            self.writer.close()

        self.logger.info(
            f"Ingestion pipeline stopped ({self.readings_received} readings received, "
            f"{self.readings_written} written, {self.write_errors} write errors)"
        )

    async def _consume(self):
        loop = asyncio.get_running_loop()
        while True:
            reading = await self.readings.get()
            try:
                if reading is _STOP:
                    return
                self.readings_received += 1
                name = await self._resolve(loop, reading)
                self._forward(name, reading)
            except Exception as e:
                self.write_errors += 1
                self.logger.error(f"Failed to forward reading from {reading.address}: {e!r}")
            finally:
                self.readings.task_done()

    async def _resolve(self, loop, reading: Reading) -> str:
        if self.performance_monitor is None:
            return await loop.run_in_executor(None, self.resolver.resolve, reading.address)
        with self.performance_monitor.measure_time("name_resolution"):
            return await loop.run_in_executor(None, self.resolver.resolve, reading.address)

    def _forward(self, name: str, reading: Reading):
        dp = reading_to_data_point(name, reading, self.measurement, self.name_tag)
        self.logger.debug(f"Got reading {name} / {reading}")
        self.writer.write_point(dp.measurement, dp.tags, dp.fields, dp.timestamp)
        self.readings_written += 1

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "readings_received": self.readings_received,
            "readings_written": self.readings_written,
            "write_errors": self.write_errors,
            "queued": self.readings.qsize() if self.readings is not None else 0,
            "active_watchers": len(self.registry),
            "watchers_spawned": self.registry.spawned,
            "devices_added": self.dispatcher.devices_added,
            "devices_skipped": self.dispatcher.devices_skipped,
        }
