"""
Structured logging configuration for dep-plugins.

Provides consistent, machine-readable logging for store discovery, dependency
tree extraction, plugin loading and parser dispatch.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .cli_config import LoggingConfig
from .error_handling import get_error_handler

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger emitting one JSON event per call."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"dep_plugins.{name}")
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def set_context(self, project_dir: Optional[str] = None, **kwargs) -> None:
        """Attach fields to every event logged until cleared."""
        self.context = {}
        if project_dir:
            self.context["project_dir"] = project_dir
        self.context.update(kwargs)

    def clear_context(self) -> None:
        """Clear logging context."""
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        """Log info level event."""
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        """Log warning level event."""
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        """Log error level event."""
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        """Log debug level event."""
        self._log("debug", event_type, **kwargs)


_discovery_logger = StructuredLogger("discovery")
_tree_logger = StructuredLogger("tree")
_loader_logger = StructuredLogger("loader")
_registry_logger = StructuredLogger("registry")

_ALL_LOGGERS = [_discovery_logger, _tree_logger, _loader_logger, _registry_logger]


def get_discovery_logger() -> StructuredLogger:
    """Get store discovery logger."""
    return _discovery_logger


def get_tree_logger() -> StructuredLogger:
    """Get dependency tree logger."""
    return _tree_logger


def get_loader_logger() -> StructuredLogger:
    """Get plugin loader logger."""
    return _loader_logger


def get_registry_logger() -> StructuredLogger:
    """Get parser registry logger."""
    return _registry_logger


def log_store_enumerated(store_root: str, package_count: int, depth: int) -> None:
    """Log the result of a store enumeration."""
    _discovery_logger.info(
        "store_enumerated",
        store_root=store_root,
        package_count=package_count,
        max_nesting=depth,
    )


def log_tree_extracted(
    project_dir: str,
    provider: str,
    candidate_count: int,
    package_count: int,
    duration_ms: Optional[int] = None,
) -> None:
    """Log a completed dependency tree extraction."""
    log_data: Dict[str, Any] = {
        "project_dir": project_dir,
        "provider": provider,
        "candidate_count": candidate_count,
        "package_count": package_count,
    }
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms

    _tree_logger.info("tree_extracted", **log_data)


def log_plugin_loaded(identifier: str, entry_path: str, stage: str) -> None:
    """Log a successfully loaded plugin module."""
    _loader_logger.debug(
        "plugin_loaded", identifier=identifier, entry_path=entry_path, stage=stage
    )


def log_registry_ready(
    project_dir: str, candidate_count: int, parser_count: int, duration_ms: int
) -> None:
    """Log completion of registry initialization."""
    _registry_logger.info(
        "registry_ready",
        project_dir=project_dir,
        candidate_count=candidate_count,
        parser_count=parser_count,
        duration_ms=duration_ms,
    )


def configure_logging(logging_config: Optional[LoggingConfig] = None) -> None:
    """
    Apply logging settings to the component loggers and the error handler.

    The level covers both the JSON event loggers and the error handler's
    logger; format and masking apply to the error handler.
    """
    logging_config = logging_config or LoggingConfig()
    level = getattr(logging, logging_config.log_level.upper(), logging.WARNING)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)

    get_error_handler().logger.configure(
        level,
        log_format=logging_config.log_format,
        mask_sensitive=logging_config.enable_sensitive_data_masking,
    )
