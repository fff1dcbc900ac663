"""
Test helper utilities for ATC ingest tests.
Provides payload generators and polling helpers for asynchronous assertions.
"""

import asyncio
from typing import Callable

from atc_ingest.ble.decoder import PVVX_CUSTOM, AdvertisementLayout, HardwareAddress, Reading, encode


class PayloadGenerator:
    """Builds service-data payloads for arbitrary sensor values."""

    @staticmethod
    def generate_address(index: int) -> str:
        """Deterministic address in the a4:c1:38 range."""
        return f"a4:c1:38:{(index >> 16) & 0xFF:02x}:{(index >> 8) & 0xFF:02x}:{index & 0xFF:02x}"

    @staticmethod
    def generate_payload(address: str,
                         temperature_centi: int = 2150,
                         humidity: int = 4500,
                         battery_millivolt: int = 3000,
                         battery_percent: int = 90,
                         measurement_counter: int = 0,
                         flags: int = 0,
                         layout: AdvertisementLayout = PVVX_CUSTOM) -> bytes:
        reading = Reading(
            address=HardwareAddress.parse(address),
            temperature_centi=temperature_centi,
            humidity=humidity,
            battery_millivolt=battery_millivolt,
            battery_percent=battery_percent,
            measurement_counter=measurement_counter,
            flags=flags,
        )
        return encode(reading, layout)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005):
    """Poll ``predicate`` until it holds, failing the test after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)
