"""
ATC Ingest - BLE thermometer advertisements to InfluxDB.

Listens for the service-data advertisements broadcast by custom-firmware
BLE thermometers (pvvx / atc1441), decodes them, names each sensor from a
persistent cache and writes the readings to InfluxDB.

Features:
- Continuous BLE discovery with one watcher per device
- Versioned binary payload layouts
- Persistent, operator-editable sensor names
- Batched InfluxDB writes
- Configuration via environment variables and .env files
"""

__version__ = "1.0.0"
__description__ = "BLE thermometer advertisement ingestion service"

from .ble.decoder import HardwareAddress, Reading, DecodeError, decode
from .metadata.names import NameResolver, NamePolicy
from .service.pipeline import IngestionPipeline
from .utils.config import Config

__all__ = [
    "HardwareAddress",
    "Reading",
    "DecodeError",
    "decode",
    "NameResolver",
    "NamePolicy",
    "IngestionPipeline",
    "Config",
]
