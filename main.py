#!/usr/bin/env python3
"""
ATC Ingest - Main Entry Point

Usage:
    python main.py --help                       # Show help
    python main.py run --url http://db:8086     # Ingest until interrupted
    python main.py names list                   # Show the sensor name cache
    python main.py names set a4:c1:38:00:11:22 "Kitchen"
    python main.py decode 22110038c1a4c4097c15a40b570c01

Requirements:
    - Python 3.10+
    - Bluetooth adapter available (BlueZ on Linux)
    - InfluxDB server accessible
    - Write access to the name cache directory (NAMES_DIR)
"""

from atc_ingest.cli.commands import cli


if __name__ == "__main__":
    cli()
