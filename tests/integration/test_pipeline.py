"""
Integration tests for the ingestion pipeline.
Tests discovery to point writing end to end with in-memory collaborators,
including shutdown ordering, backpressure and failure isolation.
"""

import asyncio
import threading

import pytest

from atc_ingest.ble.adapter import DeviceEventType, FatalAdapterError
from atc_ingest.metadata.names import NameResolver
from atc_ingest.service.pipeline import IngestionPipeline
from atc_ingest.utils.logging import PerformanceMonitor
from tests.fixtures.advertisements import AdvertisementFixtures
from tests.mocks.mock_adapter import FakeAdapter, FakeDeviceHandle, InMemoryStore, RecordingWriter
from tests.utils.helpers import PayloadGenerator, wait_until


class GatedResolver:
    """Resolver that blocks until the test opens the gate."""

    def __init__(self):
        self.gate = threading.Event()
        self.calls = 0

    def resolve(self, address):
        self.gate.wait(timeout=5)
        self.calls += 1
        return f"Sensor {address}"


class TestPipelineEndToEnd:
    """Test the full reading path with fake hardware."""

    def setup_method(self):
        self.adapter = FakeAdapter()
        self.store = InMemoryStore()
        self.writer = RecordingWriter()

    def _pipeline(self, mock_logger, resolver=None, **kwargs):
        resolver = resolver or NameResolver(self.store, mock_logger)
        return IngestionPipeline(self.adapter, resolver, self.writer, mock_logger, **kwargs)

    @pytest.mark.asyncio
    async def test_advertisement_becomes_point(self, mock_logger, kitchen_payload):
        pipeline = self._pipeline(mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("/org/bluez/hci0/dev_A4_C1_38_00_11_22")
        self.adapter.add_device(handle)
        handle.emit_service_data(kitchen_payload)
        await wait_until(lambda: len(self.writer.points) == 1)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        point = self.writer.points[0]
        assert point['measurement'] == "temperature"
        assert point['tags'] == {"room": "Sensor a4:c1:38:00:11:22"}
        assert point['fields']['temperature'] == pytest.approx(25.0)
        assert point['fields']['humidity'] == pytest.approx(55.0)
        assert point['fields']['batteryMv'] == 2980
        assert point['fields']['measurementCounter'] == 12
        assert point['timestamp'] is not None

        assert self.adapter.started_with.transport == "le"
        assert self.adapter.cancelled
        assert self.writer.flushed == 1
        assert self.writer.closed
        assert self.store.writes == [("a4:c1:38:00:11:22", b"Sensor a4:c1:38:00:11:22")]

    @pytest.mark.asyncio
    async def test_stored_name_tags_points(self, mock_logger, kitchen_payload):
        self.store.data["a4:c1:38:00:11:22"] = b"Kitchen"
        pipeline = self._pipeline(mock_logger, measurement="climate", name_tag="sensor")
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("dev_kitchen")
        self.adapter.add_device(handle)
        handle.emit_service_data(kitchen_payload)
        await wait_until(lambda: len(self.writer.points) == 1)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert self.writer.points[0]['measurement'] == "climate"
        assert self.writer.points[0]['tags'] == {"sensor": "Kitchen"}

    @pytest.mark.asyncio
    async def test_shutdown_loses_no_queued_readings(self, mock_logger):
        """Every reading a watcher pushed is written before the writer closes."""
        monitor = PerformanceMonitor()
        pipeline = self._pipeline(mock_logger, performance_monitor=monitor, queue_size=2)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handles = []
        for index in range(3):
            handle = FakeDeviceHandle(f"dev_{index}")
            address = PayloadGenerator.generate_address(index)
            for counter in range(10):
                handle.emit_service_data(PayloadGenerator.generate_payload(address, measurement_counter=counter))
            self.adapter.add_device(handle)
            handles.append(handle)

        await wait_until(lambda: all(h.subscriptions == 1 for h in handles) and len(self.writer.points) >= 1)
        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert len(self.writer.points) == monitor.get_total("readings_decoded")
        assert monitor.get_count("name_resolution_duration") == len(self.writer.points)
        assert pipeline.get_statistics()['readings_written'] == len(self.writer.points)
        assert len(pipeline.registry) == 0
        assert all(handle.releases == handle.subscriptions == 1 for handle in handles)
        assert self.writer.closed

    @pytest.mark.asyncio
    async def test_full_queue_applies_backpressure(self, mock_logger):
        resolver = GatedResolver()
        pipeline = self._pipeline(mock_logger, resolver=resolver, queue_size=1)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("dev_kitchen")
        address = AdvertisementFixtures.KITCHEN_ADDRESS
        for counter in range(5):
            handle.emit_service_data(PayloadGenerator.generate_payload(address, measurement_counter=counter))
        self.adapter.add_device(handle)

        # One reading held by the consumer, one in the queue, the watcher waits.
        await wait_until(lambda: pipeline.readings is not None and pipeline.readings.full())
        await asyncio.sleep(0.02)
        assert pipeline.readings.qsize() == 1
        assert handle.queue.qsize() >= 2
        assert self.writer.points == []

        resolver.gate.set()
        await wait_until(lambda: len(self.writer.points) == 5)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        counters = [p['fields']['measurementCounter'] for p in self.writer.points]
        assert counters == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_write_failure_does_not_stop_pipeline(self, mock_logger):
        self.writer = RecordingWriter(fail_on="Sensor a4:c1:38:00:11:22")
        pipeline = self._pipeline(mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        kitchen = FakeDeviceHandle("dev_kitchen")
        freezer = FakeDeviceHandle("dev_freezer")
        samples = AdvertisementFixtures.pvvx_valid_samples()
        self.adapter.add_device(kitchen)
        self.adapter.add_device(freezer)
        kitchen.emit_service_data(samples['kitchen']['raw_data'])
        freezer.emit_service_data(samples['freezer']['raw_data'])
        await wait_until(lambda: pipeline.readings_received == 2)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert pipeline.write_errors == 1
        assert [p['tags']['room'] for p in self.writer.points] == ["Sensor a4:c1:38:aa:bb:cc"]

    @pytest.mark.asyncio
    async def test_malformed_advertisement_is_skipped(self, mock_logger, kitchen_payload):
        pipeline = self._pipeline(mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("dev_kitchen")
        self.adapter.add_device(handle)
        handle.emit_service_data(kitchen_payload[:10])
        handle.emit_service_data(kitchen_payload)
        await wait_until(lambda: len(self.writer.points) == 1)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert len(self.writer.points) == 1


class TestDiscoveryDispatch:
    """Test watcher spawning from discovery events."""

    def setup_method(self):
        self.writer = RecordingWriter()

    def _pipeline(self, adapter, mock_logger, **kwargs):
        resolver = NameResolver(InMemoryStore(), mock_logger)
        return IngestionPipeline(adapter, resolver, self.writer, mock_logger, **kwargs)

    @pytest.mark.asyncio
    async def test_vanished_device_is_skipped(self, mock_logger):
        adapter = FakeAdapter(unavailable={"dev_gone"})
        pipeline = self._pipeline(adapter, mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        adapter.announce("dev_gone")
        adapter.announce("dev_unknown")
        await wait_until(lambda: pipeline.dispatcher.devices_skipped == 2)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert pipeline.registry.spawned == 0
        warnings = [c[0][0] for c in mock_logger.warning.call_args_list]
        assert any("Can't instantiate dev_gone" in w for w in warnings)

    @pytest.mark.asyncio
    async def test_removed_events_do_not_spawn(self, mock_logger):
        adapter = FakeAdapter()
        pipeline = self._pipeline(adapter, mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        adapter.handles["dev_kitchen"] = FakeDeviceHandle("dev_kitchen")
        adapter.announce("dev_kitchen", DeviceEventType.REMOVED)
        await asyncio.sleep(0.02)

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

        assert pipeline.registry.spawned == 0

    @pytest.mark.asyncio
    async def test_duplicate_announcements_spawn_two_watchers(self, mock_logger):
        adapter = FakeAdapter()
        pipeline = self._pipeline(adapter, mock_logger)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("dev_kitchen")
        adapter.add_device(handle)
        adapter.announce("dev_kitchen")
        await wait_until(lambda: len(pipeline.registry) == 2)

        ids = sorted(pipeline.registry.active_addresses())
        assert ids == [1, 2]

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_duplicate_watcher_replacement(self, mock_logger):
        adapter = FakeAdapter()
        pipeline = self._pipeline(adapter, mock_logger, replace_duplicate_watchers=True)
        shutdown = asyncio.Event()
        task = asyncio.ensure_future(pipeline.run(shutdown))

        handle = FakeDeviceHandle("dev_kitchen")
        adapter.add_device(handle)
        adapter.announce("dev_kitchen")
        await wait_until(lambda: pipeline.registry.spawned == 2 and len(pipeline.registry) == 1)

        assert pipeline.registry.active_addresses() == {2: "dev_kitchen"}

        shutdown.set()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_adapter_failure_propagates(self, mock_logger):
        adapter = FakeAdapter(fail_start=True)
        pipeline = self._pipeline(adapter, mock_logger)

        with pytest.raises(FatalAdapterError):
            await pipeline.run(asyncio.Event())

    def test_queue_size_must_be_positive(self, mock_logger):
        with pytest.raises(ValueError):
            self._pipeline(FakeAdapter(), mock_logger, queue_size=0)
