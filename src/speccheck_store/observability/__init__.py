"""Public observability primitives: session logging and correlation fields."""

from speccheck_store.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
