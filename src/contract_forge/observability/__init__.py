"""Public observability primitives: structured logging and correlation fields."""

from contract_forge.observability.logging import (
    DEFAULT_LOGGER_NAME,
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DEFAULT_LOGGER_NAME",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_structured_logging",
    "shutdown_logging",
]
