"""
Adapter and device-event interfaces consumed by the ingestion pipeline.

The pipeline never talks to a Bluetooth stack directly; it sees an adapter
that produces device-appeared events and device handles that produce
property-change events. ``BleakAdapter`` is the production implementation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol


SERVICE_DATA_PROPERTY = "ServiceData"


class DeviceEventType(Enum):
    """Kinds of discovery events."""
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class DeviceAppeared:
    """A device was added to (or removed from) the adapter's device list."""
    type: DeviceEventType
    path: str


@dataclass(frozen=True)
class PropertyChanged:
    """A property of a device changed; ``ServiceData`` maps service UUIDs to bytes."""
    name: str
    value: Any


@dataclass(frozen=True)
class DiscoveryFilter:
    """Discovery filter; only the transport is recognised."""
    transport: str = "le"


class AdapterError(Exception):
    """Base exception for adapter operations."""
    pass


class FatalAdapterError(AdapterError):
    """The adapter could not be obtained or discovery could not be started."""
    pass


class TransientDeviceError(AdapterError):
    """A single device could not be used; discovery is unaffected."""
    pass


class DeviceUnavailableError(TransientDeviceError):
    """The device vanished before a handle could be created."""
    pass


class SubscriptionError(TransientDeviceError):
    """Subscribing to a device's property changes failed."""
    pass


class DeviceHandle(Protocol):
    """Handle to one discovered peripheral."""

    @property
    def address(self) -> str: ...

    async def watch_properties(self) -> AsyncIterator[PropertyChanged]:
        """Subscribe to property changes; raises ``SubscriptionError``."""
        ...


class Adapter(Protocol):
    """Local Bluetooth adapter performing discovery."""

    async def start_discovery(self, discovery_filter: DiscoveryFilter) -> None:
        """Start discovery; raises ``FatalAdapterError``."""
        ...

    def discover(self) -> AsyncIterator[DeviceAppeared]:
        """Lazy, non-restartable stream of discovery events."""
        ...

    async def get_device(self, path: str) -> Optional[DeviceHandle]:
        """Resolve a handle; raises ``DeviceUnavailableError``."""
        ...

    async def cancel(self) -> None:
        """Stop discovery and close every stream handed out."""
        ...
