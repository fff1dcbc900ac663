"""
Process boundary for the ingest service.
Builds the components from configuration, installs signal handlers and runs
the ingestion pipeline until SIGINT or SIGTERM.
"""

import asyncio
import signal
from typing import Optional

from ..ble.adapter import FatalAdapterError
from ..ble.bleak_adapter import BleakAdapter
from ..ble.decoder import get_layout
from ..influxdb.client import InfluxPointWriter
from ..metadata.names import NamePolicy, NameResolver
from ..metadata.store import FileKeyValueStore
from ..utils.config import Config
from ..utils.logging import PerformanceMonitor, ProductionLogger, setup_logging
from .pipeline import IngestionPipeline


class IngestDaemonError(Exception):
    """Base exception for daemon operations."""
    pass


class IngestDaemon:
    """
    Long-running ingest service.

    Startup failures (configuration, adapter, writer) raise
    ``IngestDaemonError`` so the command line can exit non-zero; everything
    after startup is contained by the pipeline.
    """

    def __init__(self, config: Config, logger: Optional[ProductionLogger] = None):
        self.config = config
        self.logger = logger
        self.performance_monitor: Optional[PerformanceMonitor] = None
        self.pipeline: Optional[IngestionPipeline] = None
        self.writer: Optional[InfluxPointWriter] = None
        self.shutdown = asyncio.Event()

    def _initialize_components(self):
        """Build all pipeline components from configuration."""
        config = self.config
        config.validate_configuration()

        if self.logger is None:
            self.logger = setup_logging(config)
        self.performance_monitor = PerformanceMonitor()

        self.logger.info(f"Configuration: {config.get_summary()}")

        store = FileKeyValueStore(config.names_dir, cache_size_max=config.names_cache_size)
        resolver = NameResolver(
            store,
            self.logger,
            policy=NamePolicy(config.names_policy),
            label_template=config.names_label_template,
        )

        self.writer = InfluxPointWriter(
            config,
            self.logger.get_logger('atc.influxdb'),
            self.performance_monitor
        )
        self.writer.connect()

        ble_logger = self.logger.get_logger('atc.ble')
        adapter = BleakAdapter(
            ble_logger,
            adapter_name=config.ble_adapter,
            device_expiry=config.ble_device_expiry,
        )

        self.pipeline = IngestionPipeline(
            adapter,
            resolver,
            self.writer,
            ble_logger,
            performance_monitor=self.performance_monitor,
            queue_size=config.pipeline_queue_size,
            service_data_prefix=config.ble_service_data_prefix,
            layout=get_layout(config.ble_payload_format),
            measurement=config.influxdb_measurement,
            name_tag=config.influxdb_name_tag,
            shutdown_timeout=config.pipeline_shutdown_timeout,
            replace_duplicate_watchers=config.ble_replace_duplicate_watchers,
        )

    def _setup_signal_handlers(self):
        """Set the shutdown event on SIGINT and SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name}, shutting down")
            self.shutdown.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def start(self):
        """
        Run the service until a shutdown signal arrives.

        Raises:
            IngestDaemonError: If startup fails
        """
        try:
            self._initialize_components()
        except Exception as e:
            if self.logger:
                self.logger.error(f"Component initialization failed: {e}")
            raise IngestDaemonError(f"Initialization failed: {e}") from e

        self._setup_signal_handlers()

        try:
            await self.pipeline.run(self.shutdown)
        except FatalAdapterError as e:
            self.logger.critical(f"Can't initialize bt: {e}")
            self.writer.close()
            raise IngestDaemonError(str(e)) from e

        self.logger.info(f"Performance summary: {self.performance_monitor.get_performance_summary()}")

    def stop(self):
        """Request a graceful shutdown."""
        self.shutdown.set()


async def run_daemon(config: Config):
    """Run the daemon from command line."""
    daemon = IngestDaemon(config)
    await daemon.start()
