"""
Configuration management for the ATC ingest service.
Loads configuration from environment variables with validation and defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from ..ble.decoder import HardwareAddress
from ..metadata.schema import NameEntry

SAMPLE_ADDRESS = HardwareAddress.parse("a4:c1:38:00:11:22")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class Config:
    """
    Configuration manager that loads settings from environment variables.
    Provides validation and type conversion for configuration values.

    Values passed in ``overrides`` (keyed by environment variable name) take
    precedence over the environment; the command line uses this for its flags.
    """

    def __init__(self, env_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in the working directory)
            overrides: Values that win over the environment
        """
        self.logger = logging.getLogger(__name__)
        self.overrides = {k: str(v) for k, v in (overrides or {}).items() if v is not None}

        if env_file is None:
            env_file = Path.cwd() / ".env"

        if Path(env_file).exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded configuration from {env_file}")
        else:
            self.logger.debug(f"Environment file {env_file} not found, using system environment")

    def _lookup(self, key: str) -> Optional[str]:
        if key in self.overrides:
            return self.overrides[key]
        return os.getenv(key)

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = self._lookup(key)
        if value is None:
            value = default
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Get path configuration value; relative paths resolve against the working directory."""
        value = self._lookup(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = str(default)

        path = Path(value).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        return path

    # InfluxDB Configuration
    @property
    def influxdb_url(self) -> str:
        return self.get_str("INFLUXDB_URL", "http://localhost:8086")

    @property
    def influxdb_token(self) -> str:
        return self.get_str("INFLUXDB_TOKEN", "")

    @property
    def influxdb_org(self) -> str:
        return self.get_str("INFLUXDB_ORG", "")

    @property
    def influxdb_bucket(self) -> str:
        return self.get_str("INFLUXDB_BUCKET", "temperature")

    @property
    def influxdb_measurement(self) -> str:
        return self.get_str("INFLUXDB_MEASUREMENT", "temperature")

    @property
    def influxdb_name_tag(self) -> str:
        return self.get_str("INFLUXDB_NAME_TAG", "room")

    @property
    def influxdb_batch_size(self) -> int:
        return self.get_int("INFLUXDB_BATCH_SIZE", 20)

    @property
    def influxdb_flush_interval(self) -> int:
        """Batch flush interval in milliseconds."""
        return self.get_int("INFLUXDB_FLUSH_INTERVAL", 1000)

    @property
    def influxdb_timeout(self) -> int:
        """Request timeout in seconds."""
        return self.get_int("INFLUXDB_TIMEOUT", 10)

    @property
    def influxdb_verify_ssl(self) -> bool:
        return self.get_bool("INFLUXDB_VERIFY_SSL", True)

    @property
    def influxdb_enable_gzip(self) -> bool:
        return self.get_bool("INFLUXDB_ENABLE_GZIP", False)

    @property
    def influxdb_max_retries(self) -> int:
        return self.get_int("INFLUXDB_MAX_RETRIES", 3)

    # BLE Configuration
    @property
    def ble_adapter(self) -> str:
        return self.get_str("BLE_ADAPTER", "auto")

    @property
    def ble_service_data_prefix(self) -> str:
        return self.get_str("BLE_SERVICE_DATA_PREFIX", "0000181a").lower()

    @property
    def ble_payload_format(self) -> str:
        return self.get_str("BLE_PAYLOAD_FORMAT", "pvvx").lower()

    @property
    def ble_device_expiry(self) -> float:
        """Seconds without advertisements before a device is forgotten (0 disables)."""
        return self.get_float("BLE_DEVICE_EXPIRY", 300.0)

    @property
    def ble_replace_duplicate_watchers(self) -> bool:
        return self.get_bool("BLE_REPLACE_DUPLICATE_WATCHERS", False)

    # Name cache Configuration
    @property
    def names_dir(self) -> Path:
        return self.get_path("NAMES_DIR", "/var/lib/temperature")

    @property
    def names_cache_size(self) -> int:
        return self.get_int("NAMES_CACHE_SIZE", 100 * 1024)

    @property
    def names_policy(self) -> str:
        return self.get_str("NAMES_POLICY", "label").lower()

    @property
    def names_label_template(self) -> str:
        return self.get_str("NAMES_LABEL_TEMPLATE", "Sensor {address}")

    # Pipeline Configuration
    @property
    def pipeline_queue_size(self) -> int:
        return self.get_int("PIPELINE_QUEUE_SIZE", 64)

    @property
    def pipeline_shutdown_timeout(self) -> float:
        return self.get_float("PIPELINE_SHUTDOWN_TIMEOUT", 10.0)

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    @property
    def log_enable_file(self) -> bool:
        return self.get_bool("LOG_ENABLE_FILE", True)

    @property
    def log_enable_syslog(self) -> bool:
        return self.get_bool("LOG_ENABLE_SYSLOG", False)

    def _label_template_errors(self) -> list:
        """Render the label template for a sample address and check the result is a storable name."""
        template = self.names_label_template
        try:
            label = template.format(address=SAMPLE_ADDRESS)
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as e:
            return [f"NAMES_LABEL_TEMPLATE cannot be formatted: {e!r}"]
        try:
            NameEntry(address=str(SAMPLE_ADDRESS), name=label)
        except ValidationError as e:
            return [f"NAMES_LABEL_TEMPLATE produces an invalid name {label!r}: {e.errors()[0]['msg']}"]
        return []

    def validate_configuration(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = []

        try:
            if not self.influxdb_url.startswith(("http://", "https://")):
                errors.append("INFLUXDB_URL must start with http:// or https://")
            if not self.influxdb_bucket:
                errors.append("INFLUXDB_BUCKET cannot be empty")
            if not self.influxdb_measurement:
                errors.append("INFLUXDB_MEASUREMENT cannot be empty")
            if self.influxdb_batch_size < 1:
                errors.append("INFLUXDB_BATCH_SIZE must be at least 1")
            if self.influxdb_flush_interval < 1:
                errors.append("INFLUXDB_FLUSH_INTERVAL must be positive")
            if self.influxdb_timeout <= 0:
                errors.append("INFLUXDB_TIMEOUT must be positive")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.ble_payload_format not in ('pvvx', 'atc1441'):
                errors.append("BLE_PAYLOAD_FORMAT must be one of ['pvvx', 'atc1441']")
            if not self.ble_service_data_prefix:
                errors.append("BLE_SERVICE_DATA_PREFIX cannot be empty")
            if self.ble_device_expiry < 0:
                errors.append("BLE_DEVICE_EXPIRY cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.names_policy not in ('label', 'address'):
                errors.append("NAMES_POLICY must be one of ['label', 'address']")
            if '{address}' not in self.names_label_template:
                errors.append("NAMES_LABEL_TEMPLATE must contain '{address}'")
            else:
                errors.extend(self._label_template_errors())
            if self.names_cache_size < 0:
                errors.append("NAMES_CACHE_SIZE cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.pipeline_queue_size < 1:
                errors.append("PIPELINE_QUEUE_SIZE must be at least 1")
            if self.pipeline_shutdown_timeout <= 0:
                errors.append("PIPELINE_SHUTDOWN_TIMEOUT must be positive")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging. The token is never included."""
        return {
            'influxdb': {
                'url': self.influxdb_url,
                'org': self.influxdb_org,
                'bucket': self.influxdb_bucket,
                'measurement': self.influxdb_measurement,
                'batch_size': self.influxdb_batch_size,
                'flush_interval_ms': self.influxdb_flush_interval,
            },
            'ble': {
                'adapter': self.ble_adapter,
                'service_data_prefix': self.ble_service_data_prefix,
                'payload_format': self.ble_payload_format,
                'device_expiry': self.ble_device_expiry,
                'replace_duplicate_watchers': self.ble_replace_duplicate_watchers,
            },
            'names': {
                'dir': str(self.names_dir),
                'cache_size': self.names_cache_size,
                'policy': self.names_policy,
            },
            'pipeline': {
                'queue_size': self.pipeline_queue_size,
                'shutdown_timeout': self.pipeline_shutdown_timeout,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
                'enable_file': self.log_enable_file,
                'enable_syslog': self.log_enable_syslog,
            },
        }
