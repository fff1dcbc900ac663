"""
Pydantic schema for sensor name entries.
"""

from pydantic import BaseModel, Field, field_validator

from ..ble.decoder import HardwareAddress

MAX_NAME_LENGTH = 100


class StoredName(BaseModel):
    """
    A name entry as read back from the store.

    Only decoding and stripping apply here; entries edited by hand are
    honoured whatever their length.
    """
    address: str = Field(..., description="Canonical hardware address")
    name: str = Field(..., min_length=1, description="Human-readable sensor name")

    @field_validator('address')
    @classmethod
    def address_must_be_canonical(cls, v):
        """Normalize any accepted address spelling to the canonical form."""
        return normalize_address(v)

    @field_validator('name', mode='before')
    @classmethod
    def name_must_not_be_empty(cls, v):
        """Strip incidental whitespace and reject blank names."""
        if isinstance(v, bytes):
            v = v.decode('utf-8')
        if not isinstance(v, str) or not v.strip():
            raise ValueError('Sensor name cannot be empty')
        return v.strip()


class NameEntry(StoredName):
    """Display name of one sensor, keyed by its canonical hardware address."""
    name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH,
                      description="Human-readable sensor name")


def normalize_address(address: str) -> str:
    """
    Normalize a hardware address to lowercase colon-separated form.

    Args:
        address: Address with ':' or '-' separators, or none

    Returns:
        str: Canonical address

    Raises:
        ValueError: If the address is not six bytes of hex
    """
    return str(HardwareAddress.parse(address))
