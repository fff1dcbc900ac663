"""
Sample service-data payloads for testing advertisement decoding.
Provides pvvx and atc1441 samples with their expected decoded values.
"""

from typing import Any, Dict


class AdvertisementFixtures:
    """Collection of sample advertisement payloads."""

    ENVIRONMENTAL_SENSING_UUID = "0000181a-0000-1000-8000-00805f9b34fb"
    BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"

    KITCHEN_ADDRESS = "a4:c1:38:00:11:22"
    FREEZER_ADDRESS = "a4:c1:38:aa:bb:cc"

    @staticmethod
    def pvvx_valid_samples() -> Dict[str, Dict[str, Any]]:
        """
        Valid pvvx custom-format payloads with expected values.

        Returns:
            Dict mapping sample names to data and expected values
        """
        samples = {}

        samples['kitchen'] = {
            'raw_data': bytes([
                0x22, 0x11, 0x00, 0x38, 0xC1, 0xA4,  # MAC a4:c1:38:00:11:22, LSB first
                0xC4, 0x09,  # Temperature: 2500 -> 25.00 C
                0x7C, 0x15,  # Humidity: 5500 -> 55.00 %
                0xA4, 0x0B,  # Battery: 2980 mV
                0x57,        # Battery: 87 %
                0x0C,        # Counter: 12
                0x01,        # Flags
            ]),
            'expected': {
                'address': AdvertisementFixtures.KITCHEN_ADDRESS,
                'temperature_centi': 2500,
                'temperature': 25.0,
                'humidity': 5500,
                'humidity_percent': 55.0,
                'battery_millivolt': 2980,
                'battery_percent': 87,
                'measurement_counter': 12,
                'flags': 0x01,
            }
        }

        samples['freezer'] = {
            'raw_data': bytes([
                0xCC, 0xBB, 0xAA, 0x38, 0xC1, 0xA4,  # MAC a4:c1:38:aa:bb:cc, LSB first
                0xC6, 0xF8,  # Temperature: -1850 -> -18.50 C
                0x26, 0x20,  # Humidity: 8230 -> 82.30 %
                0x5A, 0x0A,  # Battery: 2650 mV
                0x29,        # Battery: 41 %
                0xFF,        # Counter: 255
                0x04,        # Flags
            ]),
            'expected': {
                'address': AdvertisementFixtures.FREEZER_ADDRESS,
                'temperature_centi': -1850,
                'temperature': -18.5,
                'humidity': 8230,
                'humidity_percent': 82.3,
                'battery_millivolt': 2650,
                'battery_percent': 41,
                'measurement_counter': 255,
                'flags': 0x04,
            }
        }

        return samples

    @staticmethod
    def atc1441_valid_samples() -> Dict[str, Dict[str, Any]]:
        """Valid atc1441-format payloads with expected values."""
        return {
            'kitchen': {
                'raw_data': bytes([
                    0xA4, 0xC1, 0x38, 0x00, 0x11, 0x22,  # MAC, MSB first
                    0x00, 0xE7,  # Temperature: 231 -> 23.1 C
                    0x30,        # Humidity: 48 %
                    0x5C,        # Battery: 92 %
                    0x0B, 0xC4,  # Battery: 3012 mV
                    0x07,        # Counter: 7
                ]),
                'expected': {
                    'address': AdvertisementFixtures.KITCHEN_ADDRESS,
                    'temperature_centi': 2310,
                    'temperature': 23.1,
                    'humidity': 48,
                    'humidity_percent': 48.0,
                    'battery_millivolt': 3012,
                    'battery_percent': 92,
                    'measurement_counter': 7,
                    'flags': 0,
                }
            }
        }

    @staticmethod
    def malformed_samples() -> Dict[str, Any]:
        """Payloads that must be rejected by the pvvx decoder."""
        return {
            'empty': b'',
            'one_short': bytes(14),
            'address_only': bytes([0x22, 0x11, 0x00, 0x38, 0xC1, 0xA4]),
        }

    @classmethod
    def service_data(cls, payload: bytes) -> Dict[str, bytes]:
        """Service-data mapping as delivered by the adapter."""
        return {cls.ENVIRONMENTAL_SENSING_UUID: payload}

    @staticmethod
    def validate_reading(reading, expected: Dict[str, Any]) -> list:
        """Compare a decoded reading with expected values; returns a list of mismatches."""
        errors = []
        for field_name, expected_value in expected.items():
            actual = getattr(reading, field_name)
            if field_name == 'address':
                actual = str(actual)
            if isinstance(expected_value, float):
                if abs(actual - expected_value) > 0.001:
                    errors.append(f"{field_name}: expected {expected_value}, got {actual}")
            elif actual != expected_value:
                errors.append(f"{field_name}: expected {expected_value}, got {actual}")
        return errors
