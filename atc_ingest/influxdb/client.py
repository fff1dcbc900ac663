"""
InfluxDB point writer for thermometer readings.
Wraps influxdb-client's batching write API: writes are queued and flushed in
the background, so ``write_point`` never waits on the network.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from influxdb_client import InfluxDBClient, Point, WriteOptions, WritePrecision
from influxdb_client.client.write_api import WriteType

from ..ble.decoder import Reading


@dataclass
class DataPoint:
    """Data point for InfluxDB storage."""
    measurement: str
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, Union[float, int, str, bool]] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass
class BatchStats:
    """Statistics for batch operations."""
    points_queued: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    batches_retried: int = 0
    last_write_time: Optional[datetime] = None
    last_error: Optional[str] = None


class WriterError(Exception):
    """Base exception for point writer operations."""
    pass


def reading_to_data_point(name: str, reading: Reading,
                          measurement: str = "temperature", name_tag: str = "room") -> DataPoint:
    """
    Convert a reading into a data point tagged with the sensor's display name.

    Args:
        name: Resolved display name
        reading: Decoded reading
        measurement: Measurement name
        name_tag: Tag key carrying the display name

    Returns:
        DataPoint: Point ready for the writer
    """
    return DataPoint(
        measurement=measurement,
        tags={name_tag: name},
        fields={
            "temperature": reading.temperature,
            "humidity": reading.humidity_percent,
            "batteryMv": int(reading.battery_millivolt),
            "batteryPercent": int(reading.battery_percent),
            "flags": int(reading.flags),
            "measurementCounter": int(reading.measurement_counter),
        },
        timestamp=reading.observed_at,
    )


def to_influx_point(dp: DataPoint) -> Point:
    """Convert a DataPoint into an influxdb-client Point."""
    point = Point(dp.measurement)

    for tag_key, tag_value in dp.tags.items():
        point = point.tag(tag_key, str(tag_value))

    for field_key, field_value in dp.fields.items():
        point = point.field(field_key, field_value)

    if dp.timestamp:
        point = point.time(dp.timestamp, WritePrecision.MS)

    return point


class InfluxPointWriter:
    """
    Point writer backed by influxdb-client's background batching.

    Failed batches are retried by the client library itself; the outcome of
    every batch is reported through callbacks into ``BatchStats``.
    """

    def __init__(self, config, logger, performance_monitor=None):
        """
        Initialize point writer.

        Args:
            config: Application configuration
            logger: Logger instance
            performance_monitor: Performance monitoring instance
        """
        self.logger = logger
        self.performance_monitor = performance_monitor

        self.url = config.influxdb_url
        self.token = config.influxdb_token
        self.org = config.influxdb_org
        self.bucket = config.influxdb_bucket
        self.timeout = config.influxdb_timeout * 1000  # Convert to milliseconds
        self.verify_ssl = config.influxdb_verify_ssl
        self.enable_gzip = config.influxdb_enable_gzip

        self.batch_size = config.influxdb_batch_size
        self.flush_interval = config.influxdb_flush_interval
        self.max_retries = config.influxdb_max_retries

        self._client: Optional[InfluxDBClient] = None
        self._write_api = None
        self._stats = BatchStats()

    def _record(self, metric: str, value: float = 1):
        if self.performance_monitor is not None:
            self.performance_monitor.record_metric(metric, value)

    def connect(self):
        """
        Create the client and its batching write API.

        Raises:
            WriterError: If the client cannot be created
        """
        try:
            self._client = InfluxDBClient(
                url=self.url,
                token=self.token,
                org=self.org,
                timeout=self.timeout,
                verify_ssl=self.verify_ssl,
                enable_gzip=self.enable_gzip
            )
            self._write_api = self._client.write_api(
                write_options=WriteOptions(
                    write_type=WriteType.batching,
                    batch_size=self.batch_size,
                    flush_interval=self.flush_interval,
                    max_retries=self.max_retries,
                ),
                success_callback=self._on_success,
                error_callback=self._on_error,
                retry_callback=self._on_retry,
            )
        except Exception as e:
            self._client = None
            self._write_api = None
            raise WriterError(f"Failed to create InfluxDB client for {self.url}: {e}") from e

        self.logger.info(f"InfluxDB writer ready for {self.url} (bucket: {self.bucket}, batch size: {self.batch_size})")

    def _on_success(self, conf, data):
        self._stats.batches_sent += 1
        self._stats.last_write_time = datetime.now(timezone.utc)
        self._record("influxdb_batches_written")
        self.logger.debug(f"Wrote batch to {conf}")

    def _on_error(self, conf, data, exception):
        self._stats.batches_failed += 1
        self._stats.last_error = str(exception)
        self._record("influxdb_write_errors")
        self.logger.error(f"Failed to write batch to {conf}: {exception}")

    def _on_retry(self, conf, data, exception):
        self._stats.batches_retried += 1
        self.logger.warning(f"Retrying batch write to {conf}: {exception}")

    def write_point(self, measurement: str, tags: Dict[str, str],
                    fields: Dict[str, Union[float, int, str, bool]],
                    timestamp: Optional[datetime] = None):
        """
        Queue one point for writing.

        Raises:
            WriterError: If the writer is not connected
        """
        if self._write_api is None:
            raise WriterError("InfluxDB writer is not connected")

        point = to_influx_point(DataPoint(measurement, tags, fields, timestamp))
        self._write_api.write(bucket=self.bucket, org=self.org, record=point)
        self._stats.points_queued += 1

    def flush(self):
        """Send everything queued so far."""
        if self._write_api is not None:
            self._write_api.flush()

    def close(self):
        """Flush pending batches and release the client."""
        if self._write_api is not None:
            self._write_api.close()
            self._write_api = None
        if self._client is not None:
            self._client.close()
            self._client = None
        self.logger.info(
            f"InfluxDB writer closed ({self._stats.points_queued} points queued, "
            f"{self._stats.batches_sent} batches sent, {self._stats.batches_failed} failed)"
        )

    def is_connected(self) -> bool:
        return self._write_api is not None

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected(),
            "points_queued": self._stats.points_queued,
            "batches_sent": self._stats.batches_sent,
            "batches_failed": self._stats.batches_failed,
            "batches_retried": self._stats.batches_retried,
            "last_write_time": self._stats.last_write_time,
            "last_error": self._stats.last_error,
        }
