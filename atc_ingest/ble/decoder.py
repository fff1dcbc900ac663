"""
Service-data payload decoding for custom-firmware BLE thermometers.

Decodes the fixed-layout records broadcast by Xiaomi LYWSD03MMC style
sensors running the pvvx or atc1441 firmware in the 0x181A (Environmental
Sensing) service-data element. Each supported layout is a versioned constant;
byte order and field order are never re-derived per call.
"""

import struct
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple


class DecodeErrorKind(Enum):
    """Reasons a payload could not be decoded."""
    TOO_SHORT = "too_short"
    UNEXPECTED_TYPE = "unexpected_type"


class DecodeError(Exception):
    """Raised when a service-data payload cannot be decoded."""

    def __init__(self, kind: DecodeErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class HardwareAddress:
    """
    Six-byte BLE hardware address, stored most-significant byte first.

    The canonical string form is colon-separated lowercase hex
    (``a4:c1:38:00:11:22``) and is used as the name cache key.
    """
    octets: bytes

    def __post_init__(self):
        if len(self.octets) != 6:
            raise ValueError(f"Hardware address must be 6 bytes, got {len(self.octets)}")

    @classmethod
    def parse(cls, text: str) -> 'HardwareAddress':
        """Parse an address written with ':' or '-' separators, or none."""
        clean = ''.join(c for c in text.strip() if c not in ':-')
        if len(clean) != 12:
            raise ValueError(f"Invalid hardware address: {text!r}")
        try:
            return cls(bytes.fromhex(clean))
        except ValueError:
            raise ValueError(f"Invalid hardware address: {text!r}")

    def __str__(self) -> str:
        return ':'.join(f'{b:02x}' for b in self.octets)


@dataclass(frozen=True)
class Reading:
    """One decoded advertisement."""
    address: HardwareAddress
    temperature_centi: int
    humidity: int
    battery_millivolt: int
    battery_percent: int
    measurement_counter: int
    flags: int = 0
    humidity_divisor: int = 100
    observed_at: Optional[datetime] = None

    @property
    def temperature(self) -> float:
        """Temperature in degrees Celsius."""
        return self.temperature_centi / 100.0

    @property
    def humidity_percent(self) -> float:
        """Relative humidity in percent."""
        return self.humidity / self.humidity_divisor


@dataclass(frozen=True)
class AdvertisementLayout:
    """
    Wire layout of one firmware advertisement format.

    Attributes:
        name: Configuration name of the layout
        version: Layout revision
        struct_format: struct format string, byte order included
        fields: Reading attribute for each unpacked value, in wire order
        address_reversed: Address bytes are sent least-significant first
        temperature_factor: Multiplier turning the raw temperature into 0.01 C
        humidity_divisor: Divisor turning the raw humidity into percent
    """
    name: str
    version: int
    struct_format: str
    fields: Tuple[str, ...]
    address_reversed: bool
    temperature_factor: int
    humidity_divisor: int

    @property
    def size(self) -> int:
        return struct.calcsize(self.struct_format)


# pvvx custom format: https://github.com/pvvx/ATC_MiThermometer#custom-format-all-data-little-endian
PVVX_CUSTOM = AdvertisementLayout(
    name="pvvx",
    version=1,
    struct_format="<6shHHBBB",
    fields=("address", "temperature_centi", "humidity", "battery_millivolt",
            "battery_percent", "measurement_counter", "flags"),
    address_reversed=True,
    temperature_factor=1,
    humidity_divisor=100,
)

# atc1441 format: all big-endian, temperature in 0.1 C, humidity in whole percent
ATC1441 = AdvertisementLayout(
    name="atc1441",
    version=1,
    struct_format=">6shBBHB",
    fields=("address", "temperature_centi", "humidity", "battery_percent",
            "battery_millivolt", "measurement_counter"),
    address_reversed=False,
    temperature_factor=10,
    humidity_divisor=1,
)

LAYOUTS: Dict[str, AdvertisementLayout] = {
    PVVX_CUSTOM.name: PVVX_CUSTOM,
    ATC1441.name: ATC1441,
}


def get_layout(name: str) -> AdvertisementLayout:
    """Look up a layout by its configuration name."""
    try:
        return LAYOUTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown payload format '{name}', expected one of {sorted(LAYOUTS)}")


def decode(payload: bytes, layout: AdvertisementLayout = PVVX_CUSTOM,
           observed_at: Optional[datetime] = None) -> Reading:
    """
    Decode one service-data payload.

    Args:
        payload: Raw bytes of the service-data element
        layout: Advertisement layout to decode with
        observed_at: Capture time to stamp on the reading

    Returns:
        Reading: Decoded reading

    Raises:
        DecodeError: If the payload is not bytes-like or is shorter than the record
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise DecodeError(
            DecodeErrorKind.UNEXPECTED_TYPE,
            f"Expected a byte sequence, got {type(payload).__name__}"
        )

    payload = bytes(payload)
    if len(payload) < layout.size:
        raise DecodeError(
            DecodeErrorKind.TOO_SHORT,
            f"{layout.name} payload needs {layout.size} bytes, got {len(payload)}"
        )

    values = dict(zip(layout.fields, struct.unpack_from(layout.struct_format, payload)))

    address = values.pop("address")
    if layout.address_reversed:
        address = address[::-1]
    values["temperature_centi"] *= layout.temperature_factor

    return Reading(
        address=HardwareAddress(address),
        humidity_divisor=layout.humidity_divisor,
        observed_at=observed_at,
        **values
    )


def encode(reading: Reading, layout: AdvertisementLayout = PVVX_CUSTOM) -> bytes:
    """Encode a reading back into the wire layout."""
    address = reading.address.octets
    if layout.address_reversed:
        address = address[::-1]

    values = {
        "address": address,
        "temperature_centi": reading.temperature_centi // layout.temperature_factor,
        "humidity": reading.humidity,
        "battery_millivolt": reading.battery_millivolt,
        "battery_percent": reading.battery_percent,
        "measurement_counter": reading.measurement_counter,
        "flags": reading.flags,
    }
    return struct.pack(layout.struct_format, *(values[f] for f in layout.fields))
