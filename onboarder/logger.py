"""
Structured logging system for the onboarding pipeline.

Provides centralized logging with console and file outputs, JSON context
on every event, and counters for monitoring onboarding throughput.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring ingestion and worker outcomes.
    """

    def __init__(
        self,
        name: str = "onboarder",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)

        # Workers update counters from several threads
        self._metrics_lock = Lock()
        self.reset_metrics()
        self.configure(level, log_dir, enable_file, enable_console)

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """Replace handlers in place so module-level references stay valid."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()  # Remove existing handlers
        self.logger.propagate = False

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"onboarder_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def reset_metrics(self):
        with self._metrics_lock:
            self.metrics = {
                "organizations_received": 0,
                "jobs_dispatched": 0,
                "onboardings_started": 0,
                "onboardings_completed": 0,
                "onboardings_failed": 0,
                "retries_scheduled": 0,
                "permanent_failures": 0,
                "failures_by_reason": {},
            }

    def _incr(self, key: str, amount: int = 1):
        with self._metrics_lock:
            self.metrics[key] += amount

    def record_received(self, count: int):
        """Record organizations accepted by an ingestion call."""
        self._incr("organizations_received", count)

    def record_dispatched(self, count: int):
        """Record jobs pushed onto the onboarding queue."""
        self._incr("jobs_dispatched", count)

    def record_started(self):
        self._incr("onboardings_started")

    def record_completed(self):
        self._incr("onboardings_completed")

    def record_failure(self, reason: str):
        """Record a failed onboarding attempt, grouped by reason."""
        with self._metrics_lock:
            self.metrics["onboardings_failed"] += 1
            reasons = self.metrics["failures_by_reason"]
            reasons[reason] = reasons.get(reason, 0) + 1

    def record_retry(self):
        self._incr("retries_scheduled")

    def record_permanent_failure(self):
        self._incr("permanent_failures")

    def get_metrics(self) -> dict:
        """Return current metrics."""
        with self._metrics_lock:
            metrics_copy = dict(self.metrics)
            metrics_copy["failures_by_reason"] = dict(self.metrics["failures_by_reason"])

        started = metrics_copy["onboardings_started"]
        if started > 0:
            metrics_copy["completion_rate"] = round(
                metrics_copy["onboardings_completed"] / started, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        started = metrics["onboardings_started"]
        completed = metrics["onboardings_completed"]
        overall_rate = 0
        if started > 0:
            overall_rate = round(completed / started * 100, 1)

        self.info("=== Onboarding Session Metrics ===")
        self.info(f"Organizations received: {metrics['organizations_received']}")
        self.info(f"Jobs dispatched: {metrics['jobs_dispatched']}")
        self.info(f"Attempts: {completed}/{started} completed ({overall_rate}% success)")
        self.info(f"Retries scheduled: {metrics['retries_scheduled']}")
        self.info(f"Permanent failures: {metrics['permanent_failures']}")

        if metrics["failures_by_reason"]:
            self.info("Failure reasons:")
            for reason, count in metrics["failures_by_reason"].items():
                self.info(f"  {reason}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "onboarder",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    File output is off unless a ``log_dir`` is given.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        kwargs.setdefault("enable_file", kwargs.get("log_dir") is not None)
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
