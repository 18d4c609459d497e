"""
Error handling for dep-plugins.

Defines the exception types raised across discovery and dispatch, and a
centralized error handler that logs structured, sanitized error context and
notifies registered callbacks.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class DiscoveryError(Exception):
    """Base exception for all dep-plugins errors."""

    pass


class EntryNotFoundError(DiscoveryError, FileNotFoundError):
    """Raised when no loadable entry file exists for a package."""

    pass


class TreeProviderError(DiscoveryError):
    """Raised when every dependency-tree provider failed to produce output."""

    pass


class MalformedTreeError(DiscoveryError, ValueError):
    """Raised when provider output contains no parsable dependency tree."""

    pass


class PluginLoadError(DiscoveryError):
    """Raised when a plugin module fails to load."""

    pass


class PluginContractError(DiscoveryError, TypeError):
    """Raised when an object does not implement the parser plugin contract."""

    pass


class MissingOptionsError(DiscoveryError, TypeError):
    """Raised when a call is missing its required options argument."""

    pass


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories for better classification."""

    FILESYSTEM = "FILESYSTEM"
    PARSING = "PARSING"
    PROVIDER = "PROVIDER"
    PLUGIN = "PLUGIN"
    CONFIGURATION = "CONFIGURATION"
    VALIDATION = "VALIDATION"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    traceback_info: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


# Provider output and resolved URLs can carry registry credentials
SENSITIVE_PATTERNS = [
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
    (r'_authToken["\s]*[:=]["\s]*([^\s"\']+)', '_authToken="[REDACTED]"'),
    (r'password["\s]*[:=]["\s]*([^\s"\']+)', 'password="[REDACTED]"'),
    (r"(https?://[^@\s/]+:)[^@\s/]+@", r"\1[REDACTED]@"),
    (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
]


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecureLogger:
    """Logger wrapper that sanitizes sensitive information."""

    def __init__(
        self,
        name: str,
        level: int = logging.WARNING,
        log_format: str = DEFAULT_LOG_FORMAT,
        mask_sensitive: bool = True,
    ):
        """
        Initialize secure logger.

        Args:
            name: Logger name
            level: Logging level
            log_format: Format string for the stderr handler
            mask_sensitive: Redact credentials from messages and details
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.mask_sensitive = mask_sensitive

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(log_format))
            self.logger.addHandler(handler)

    def configure(
        self,
        level: int,
        log_format: Optional[str] = None,
        mask_sensitive: Optional[bool] = None,
    ) -> None:
        """Apply level, format and masking settings to an existing logger."""
        self.logger.setLevel(level)
        if log_format:
            for handler in self.logger.handlers:
                handler.setFormatter(logging.Formatter(log_format))
        if mask_sensitive is not None:
            self.mask_sensitive = mask_sensitive

    def _sanitize_message(self, message: str) -> str:
        """Remove credentials from a message."""
        if not self.mask_sensitive:
            return message
        sanitized = message
        for pattern, replacement in SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize dictionary values to remove sensitive info."""
        if not self.mask_sensitive:
            return dict(data)
        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if any(sensitive_key in key.lower() for sensitive_key in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext) -> None:
        """
        Log error context with appropriate level.

        Args:
            context: Error context to log
        """
        log_data: Dict[str, Any] = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__

        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        log_message = f"{self._sanitize_message(context.message)} | {log_data}"
        level = getattr(logging, context.level.value)
        self.logger.log(level, log_message)


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Provides logging, callbacks, and structured error handling
    for library components.
    """

    def __init__(
        self,
        logger_name: str = "dep_plugins",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ) -> None:
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback.format_exc() if exception else None,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
            for callback in callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback failures must not break the main flow
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def debug(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle debug level error."""
        return self.handle_error(
            ErrorLevel.DEBUG, category, message, module, function, **kwargs
        )

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Get error statistics."""
        return self.error_stats.copy()

    def reset_stats(self) -> None:
        """Reset error statistics."""
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def log_filesystem_warning(
    message: str,
    module: str,
    function: str,
    path: Optional[Path] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Convenience function for tolerated filesystem conditions.

    Args:
        message: Error message
        module: Module name
        function: Function name
        path: Path that was missing or unreadable
        exception: Optional exception
    """
    details = {}
    if path is not None:
        details["path"] = str(path)

    return get_error_handler().warning(
        ErrorCategory.FILESYSTEM,
        message,
        module,
        function,
        details=details,
        exception=exception,
    )


def log_plugin_error(
    message: str,
    module: str,
    function: str,
    identifier: Optional[str] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Convenience function for logging plugin load failures.

    Args:
        message: Error message
        module: Module name
        function: Function name
        identifier: Identifier the plugin was requested by
        exception: Optional exception
    """
    details = {}
    if identifier is not None:
        details["identifier"] = identifier

    suggestions = [
        "Check that the package exports a 'parser' class",
        "Verify the manifest 'main' field points at a Python file",
    ]

    return get_error_handler().error(
        ErrorCategory.PLUGIN,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=suggestions,
    )


def log_provider_error(
    message: str,
    module: str,
    function: str,
    provider: Optional[str] = None,
    return_code: Optional[int] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Convenience function for dependency-tree provider failures.

    Args:
        message: Error message
        module: Module name
        function: Function name
        provider: Provider name
        return_code: Exit status of the provider process
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if provider is not None:
        details["provider"] = provider
    if return_code is not None:
        details["return_code"] = return_code

    return get_error_handler().warning(
        ErrorCategory.PROVIDER,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=["Check that the package manager is installed and on PATH"],
    )
