"""
Pytest configuration and shared fixtures for ATC ingest tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, Mock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from atc_ingest.ble.decoder import HardwareAddress
from atc_ingest.utils.config import Config
from atc_ingest.utils.logging import PerformanceMonitor, ProductionLogger

from tests.fixtures.advertisements import AdvertisementFixtures


@pytest.fixture
def mock_config():
    """Create a mock configuration for testing."""
    config = Mock(spec=Config)

    config.influxdb_url = "http://localhost:8086"
    config.influxdb_token = "test-token"
    config.influxdb_org = "home"
    config.influxdb_bucket = "temperature"
    config.influxdb_measurement = "temperature"
    config.influxdb_name_tag = "room"
    config.influxdb_batch_size = 20
    config.influxdb_flush_interval = 1000
    config.influxdb_timeout = 10
    config.influxdb_verify_ssl = True
    config.influxdb_enable_gzip = False
    config.influxdb_max_retries = 3

    config.ble_adapter = "auto"
    config.ble_service_data_prefix = "0000181a"
    config.ble_payload_format = "pvvx"
    config.ble_device_expiry = 300.0
    config.ble_replace_duplicate_watchers = False

    return config


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock(spec=ProductionLogger)
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    logger.get_logger = Mock(return_value=logger)
    return logger


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    monitor = Mock(spec=PerformanceMonitor)
    monitor.record_metric = Mock()

    mock_context = MagicMock()
    mock_context.__enter__ = Mock(return_value=mock_context)
    mock_context.__exit__ = Mock(return_value=None)
    monitor.measure_time = Mock(return_value=mock_context)

    return monitor


@pytest.fixture
def kitchen_payload():
    """pvvx payload for a4:c1:38:00:11:22 at 25.00 C / 55.00 %."""
    return AdvertisementFixtures.pvvx_valid_samples()['kitchen']['raw_data']


@pytest.fixture
def kitchen_address():
    return HardwareAddress.parse(AdvertisementFixtures.KITCHEN_ADDRESS)


@pytest.fixture
def fixed_clock():
    """Clock returning a fixed UTC timestamp."""
    moment = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    return lambda: moment


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "requires_bluetooth: mark test as requiring Bluetooth hardware")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
