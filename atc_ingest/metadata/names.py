"""
Hardware address to display name resolution backed by a persistent store.
"""

from enum import Enum
from typing import List

from pydantic import ValidationError

from ..ble.decoder import HardwareAddress
from .schema import NameEntry, StoredName
from .store import KeyNotFoundError, StoreError


class NamePolicy(Enum):
    """What ``resolve`` returns for an address seen for the first time."""
    LABEL = "label"      # the synthesized "Sensor <address>" label
    ADDRESS = "address"  # the bare canonical address


class NameResolver:
    """
    Maps hardware addresses to human-readable names.

    The first time an address is resolved a default label is written to the
    store; from then on the stored value is returned, so an operator can
    rename a sensor by editing its entry. Store failures never reach the
    caller: they degrade to the default label or the canonical address.
    """

    def __init__(self, store, logger, policy: NamePolicy = NamePolicy.LABEL,
                 label_template: str = "Sensor {address}"):
        """
        Initialize name resolver.

        Args:
            store: Key-value store with ``read``/``write``
            logger: Logger instance
            policy: Value returned for newly created entries
            label_template: Format string for default labels
        """
        self.store = store
        self.logger = logger
        self.policy = policy
        self.label_template = label_template

    def default_label(self, address: HardwareAddress) -> str:
        label = self.label_template.format(address=address).strip()
        if not label:
            raise ValueError(f"Label template {self.label_template!r} produced an empty label")
        return label

    def resolve(self, address: HardwareAddress) -> str:
        """
        Resolve the display name for an address.

        Args:
            address: Hardware address of the sensor

        Returns:
            str: Non-empty display name
        """
        key = str(address)

        try:
            raw = self.store.read(key)
        except KeyNotFoundError:
            return self._create_default(address)
        except StoreError as e:
            self.logger.warning(f"Name store read failed for {key}: {e}")
            return self._create_default(address)

        try:
            return StoredName(address=key, name=raw).name
        except ValidationError:
            self.logger.warning(f"Ignoring unusable name entry for {key}, using address")
            return key

    def _create_default(self, address: HardwareAddress) -> str:
        key = str(address)
        try:
            label = self.default_label(address)
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as e:
            self.logger.warning(f"Label template {self.label_template!r} failed for {key}: {e!r}, using address")
            label = key

        try:
            self.store.write(key, label.encode('utf-8'))
            self.logger.info(f"Created name entry for {key}: {label!r}")
        except StoreError as e:
            self.logger.warning(f"Could not persist name entry for {key}: {e}")

        if self.policy is NamePolicy.ADDRESS:
            return key
        return label

    def set_name(self, address: str, name: str) -> NameEntry:
        """
        Store a display name, replacing any existing entry.

        Raises:
            pydantic.ValidationError: If the address or name is invalid
            StoreError: If the entry cannot be written
        """
        entry = NameEntry(address=address, name=name)
        self.store.write(entry.address, entry.name.encode('utf-8'))
        self.logger.info(f"Set name for {entry.address}: {entry.name!r}")
        return entry

    def list_names(self) -> List[StoredName]:
        """Return every usable entry in the store."""
        entries = []
        for key in self.store.keys():
            try:
                entries.append(StoredName(address=key, name=self.store.read(key)))
            except (ValidationError, StoreError) as e:
                self.logger.debug(f"Skipping name entry {key}: {e}")
        return entries
