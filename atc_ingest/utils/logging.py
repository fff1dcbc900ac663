"""
Logging configuration for the ATC ingest service.
Provides console, rotating file and syslog handlers plus per-component loggers.
"""

import logging
import logging.handlers
import sys
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import colorlog


COMPONENT_LOGGERS = {
    'atc.ble': ("ble_scanner.log", '%(asctime)s [%(levelname)s] BLE: %(message)s'),
    'atc.influxdb': ("influxdb.log", '%(asctime)s [%(levelname)s] InfluxDB: %(message)s'),
    'atc.performance': ("performance.log", '%(asctime)s PERF: %(message)s'),
}


class ProductionLogger:
    """
    Logging setup for production deployment with multiple handlers.

    Components receive a logger explicitly, either this object (which logs
    through the root logger) or one of the component loggers returned by
    ``get_logger``.
    """

    def __init__(self,
                 app_name: str = "atc_ingest",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True,
                 enable_file: bool = True,
                 enable_syslog: bool = False):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_file = enable_file
        self.enable_syslog = enable_syslog

        if self.enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        if self.enable_file:
            self._setup_component_loggers()

    def _setup_root_logger(self):
        """Configure root logger with the enabled handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            ))
            root_logger.addHandler(console_handler)

        if self.enable_file:
            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / f"{self.app_name}.log",
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            root_logger.addHandler(file_handler)

        # Syslog handler for systemd integration
        if self.enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_handler.setLevel(logging.WARNING)
                syslog_handler.setFormatter(logging.Formatter(
                    f'{self.app_name}[%(process)d]: %(levelname)s - %(message)s'
                ))
                root_logger.addHandler(syslog_handler)
            except OSError as e:
                root_logger.warning(f"Could not setup syslog handler: {e}")

    def _setup_component_loggers(self):
        """Give each component logger its own rotating file."""
        for name, (file_name, fmt) in COMPONENT_LOGGERS.items():
            component_logger = logging.getLogger(name)
            component_logger.handlers.clear()
            handler = logging.handlers.RotatingFileHandler(
                self.log_dir / file_name,
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            handler.setFormatter(logging.Formatter(fmt))
            component_logger.addHandler(handler)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a logger instance."""
        if name:
            return logging.getLogger(name)
        return logging.getLogger()

    def debug(self, message: str, *args, **kwargs):
        logging.getLogger().debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        logging.getLogger().info(message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        logging.getLogger().warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        logging.getLogger().error(message, *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        logging.getLogger().critical(message, *args, **kwargs)


class PerformanceMonitor:
    """
    Counter and timing collection for production debugging.

    Totals and counts are kept as running sums; only the most recent
    ``history_size`` samples per metric are retained.
    """

    def __init__(self, logger=None, history_size: int = 100):
        self.logger = logger or logging.getLogger('atc.performance')
        self.history_size = history_size
        self.metrics: Dict[str, deque] = {}
        self.totals: Dict[str, float] = {}
        self.counts: Dict[str, int] = {}
        self.start_time = datetime.now()

    def record_metric(self, metric_name: str, value: float):
        """Record a metric value."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = deque(maxlen=self.history_size)
        self.metrics[metric_name].append({
            'value': value,
            'timestamp': datetime.now()
        })
        self.totals[metric_name] = self.totals.get(metric_name, 0) + value
        self.counts[metric_name] = self.counts.get(metric_name, 0) + 1
        self.logger.debug(f"METRIC {metric_name}={value}")

    @contextmanager
    def measure_time(self, operation_name: str):
        """Context manager for measuring operation time."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            self.record_metric(f"{operation_name}_duration", duration)

    def get_total(self, metric_name: str) -> float:
        """Sum of all values recorded for a metric."""
        return self.totals.get(metric_name, 0)

    def get_count(self, metric_name: str) -> int:
        return self.counts.get(metric_name, 0)

    def get_performance_summary(self) -> Dict[str, Any]:
        """Totals per metric, duration statistics and uptime."""
        summary: Dict[str, Any] = {
            'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
        }
        for name, total in self.totals.items():
            if name.endswith('_duration'):
                summary[f"{name}_avg"] = total / self.counts[name]
                summary[f"{name}_recent_max"] = max(entry['value'] for entry in self.metrics[name])
            else:
                summary[name] = total
        return summary


def setup_logging(config) -> ProductionLogger:
    """
    Setup logging from configuration.

    Args:
        config: Configuration instance

    Returns:
        ProductionLogger instance
    """
    return ProductionLogger(
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console,
        enable_file=config.log_enable_file,
        enable_syslog=config.log_enable_syslog
    )
