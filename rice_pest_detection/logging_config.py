"""Centralized logging configuration for the rice pest detection system."""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path

LOGGER_NAMESPACE = "rice_pest_detection"


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds structured information to log records."""

    def __init__(self, include_context: bool = True):
        self.include_context = include_context
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with structured information."""
        base_format = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"

        if self.include_context and hasattr(record, 'context'):
            context_str = " | ".join([f"{k}={v}" for k, v in record.context.items()])
            base_format += f" | Context: {context_str}"

        if record.levelno >= logging.ERROR and record.exc_info:
            base_format += " | %(pathname)s:%(lineno)d"

        formatter = logging.Formatter(base_format)
        return formatter.format(record)


class ContextFilter(logging.Filter):
    """Filter that tags records with the emitting component."""

    def __init__(self, component_name: Optional[str] = None):
        super().__init__()
        self.component_name = component_name
        self.process_id = os.getpid()

    def filter(self, record: logging.LogRecord) -> bool:
        record.process_id = self.process_id
        if self.component_name:
            record.component = self.component_name
        record.timestamp_ms = datetime.now().timestamp() * 1000
        return True


class LoggingManager:
    """Installs console and rotating file handlers for the whole system."""

    def __init__(self, log_dir: str = "logs", log_level: int = logging.INFO,
                 console: bool = True):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Log files
        self.main_log_file = self.log_dir / "pest_detection.log"
        self.error_log_file = self.log_dir / "errors.log"
        self.performance_log_file = self.log_dir / "performance.log"

        self.log_level = log_level
        self.max_log_size = 10 * 1024 * 1024  # 10MB
        self.backup_count = 5
        self.console = console

        self._handlers = []
        self._perf_handler: Optional[logging.Handler] = None
        self._setup_root_logger()

    def _setup_root_logger(self) -> None:
        """Attach handlers to the package logger."""
        package_logger = logging.getLogger(LOGGER_NAMESPACE)
        package_logger.setLevel(self.log_level)

        if self.console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(StructuredFormatter(include_context=False))
            self._add_handler(package_logger, console_handler)

        main_file_handler = logging.handlers.RotatingFileHandler(
            self.main_log_file,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count
        )
        main_file_handler.setLevel(logging.DEBUG)
        main_file_handler.setFormatter(StructuredFormatter(include_context=True))
        self._add_handler(package_logger, main_file_handler)

        # Errors and critical only
        error_file_handler = logging.handlers.RotatingFileHandler(
            self.error_log_file,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count
        )
        error_file_handler.setLevel(logging.ERROR)
        error_file_handler.setFormatter(StructuredFormatter(include_context=True))
        self._add_handler(package_logger, error_file_handler)

        perf_logger = logging.getLogger(f"{LOGGER_NAMESPACE}.performance")
        self._perf_handler = logging.handlers.RotatingFileHandler(
            self.performance_log_file,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count
        )
        self._perf_handler.setLevel(logging.INFO)
        self._perf_handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s"))
        perf_logger.addHandler(self._perf_handler)

        package_logger.info("Logging system initialized")

    def _add_handler(self, logger: logging.Logger, handler: logging.Handler) -> None:
        logger.addHandler(handler)
        self._handlers.append(handler)

    def set_log_level(self, level: int) -> None:
        """Set the level for the package logger and its console handler."""
        self.log_level = level
        logging.getLogger(LOGGER_NAMESPACE).setLevel(level)

    def get_log_stats(self) -> Dict[str, Any]:
        """Get logging statistics."""
        stats = {
            "log_directory": str(self.log_dir),
            "log_files": {},
            "log_level": logging.getLevelName(self.log_level)
        }

        for log_file in [self.main_log_file, self.error_log_file, self.performance_log_file]:
            if log_file.exists():
                stats["log_files"][log_file.name] = {
                    "size_mb": log_file.stat().st_size / (1024 * 1024),
                    "modified": datetime.fromtimestamp(log_file.stat().st_mtime).isoformat()
                }

        return stats

    def close(self) -> None:
        """Detach and close every handler this manager installed."""
        package_logger = logging.getLogger(LOGGER_NAMESPACE)
        for handler in self._handlers:
            package_logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        if self._perf_handler is not None:
            logging.getLogger(f"{LOGGER_NAMESPACE}.performance").removeHandler(self._perf_handler)
            self._perf_handler.close()
            self._perf_handler = None


# Set by setup_logging(); nothing is written to disk until then
logging_manager: Optional[LoggingManager] = None
_component_loggers: Dict[str, logging.Logger] = {}


def get_logger(component_name: str) -> logging.Logger:
    """Get the logger for a component, tagged with a ContextFilter."""
    if component_name in _component_loggers:
        return _component_loggers[component_name]

    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{component_name}")
    logger.addFilter(ContextFilter(component_name))
    _component_loggers[component_name] = logger
    return logger


def log_with_context(logger: logging.Logger, level: int, message: str,
                     context: Optional[Dict[str, Any]] = None) -> None:
    """Log message with additional context information."""
    if context:
        logger.log(level, message, extra={"context": context})
    else:
        logger.log(level, message)


def log_performance(message: str, metrics: Optional[Dict[str, Any]] = None) -> None:
    """Log timing metrics to the performance log."""
    perf_logger = logging.getLogger(f"{LOGGER_NAMESPACE}.performance")

    if metrics:
        metric_str = " | ".join([f"{k}={v}" for k, v in metrics.items()])
        message = f"{message} | {metric_str}"

    perf_logger.info(message)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs",
                  console: bool = True) -> LoggingManager:
    """Setup centralized logging system."""
    global logging_manager

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if logging_manager is not None:
        logging_manager.close()

    logging_manager = LoggingManager(log_dir, numeric_level, console=console)
    return logging_manager
