"""Optional Logfire tracing for scan runs.

With ENABLE_LOGFIRE=true and logfire installed (pip install 'shopguard[tracing]'),
summarizer agent runs and OpenAI classification calls are instrumented and
every site scan gets its own span. Otherwise trace_operation still yields an
attribute dict and only logs the elapsed time.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SERVICE_NAME = "shopguard"


@dataclass
class TracingContext:
    enabled: bool = False
    service_name: str = SERVICE_NAME


_context = TracingContext()


def setup_tracing(enabled: bool = False, token: str = "", service_name: str = SERVICE_NAME) -> TracingContext:
    """Turn on Logfire spans for this process.

    Tracing stays off, with a log line saying why, when logfire is missing
    or fails to configure. An empty token keeps spans local.
    """
    _context.enabled = False
    _context.service_name = service_name
    if not enabled:
        return _context

    try:
        import logfire
    except ImportError:
        logger.warning("Tracing requested but logfire is not installed; continuing without it")
        return _context

    try:
        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        logfire.instrument_openai()
    except Exception as e:
        logger.error("Logfire setup failed, tracing off | error=%s", e)
        return _context

    _context.enabled = True
    logger.info("Tracing on | service=%s", service_name)
    return _context


@contextmanager
def trace_operation(name: str, attributes: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
    """Run a block inside a span named `name`.

    Entries the caller adds to the yielded dict become span attributes
    once the block finishes.
    """
    started = time.monotonic()
    results: dict[str, Any] = {}
    try:
        if not _context.enabled:
            yield results
            return
        import logfire

        with logfire.span(name, **(attributes or {})) as span:
            yield results
            for key, value in results.items():
                span.set_attribute(key, value)
    finally:
        logger.debug("%s took %.2fs", name, time.monotonic() - started)
