"""Logging and optional tracing for ShopGuard.

setup_logging:
    Console plus rotating file logging with run and site context.

setup_tracing / trace_operation:
    Optional Logfire spans (ENABLE_LOGFIRE=true).
"""

from observability.logging import clear_context, set_run_context, setup_logging, site_context
from observability.tracing import TracingContext, setup_tracing, trace_operation

__all__ = [
    "setup_logging",
    "set_run_context",
    "site_context",
    "clear_context",
    "setup_tracing",
    "trace_operation",
    "TracingContext",
]
