"""
Monitoring and Tracing Configuration Module.

This module provides optional integration with Pydantic Logfire for tracing
the engine's hot paths and background passes:
- Hybrid search and path suggestion spans
- Scorer training passes
- Degraded (fallback) responses

When Logfire is disabled or not configured every helper here is a no-op, so
callers never have to guard their instrumentation.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

# Logfire configuration from environment
LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_PROJECT_NAME = os.getenv("LOGFIRE_PROJECT_NAME", "capmesh-ai")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "capmesh-ai-engine")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.0.0")

# Sampling configuration
LOGFIRE_SAMPLE_RATE = float(os.getenv("LOGFIRE_SAMPLE_RATE", "1.0"))

# Feature flags
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")

_initialized = False


def is_enabled() -> bool:
    return _initialized


def initialize_logfire() -> None:
    """
    Initialize Pydantic Logfire for monitoring and tracing.

    This function sets up Logfire with automatic instrumentation for:
    - SQLAlchemy database operations (repositories)
    - HTTPX HTTP requests (embedding provider)

    The initialization is conditional based on the LOGFIRE_ENABLED environment variable.
    """
    global _initialized

    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return

    if not LOGFIRE_TOKEN:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        return

    try:
        import logfire
        from logfire import SamplingOptions

        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
            sampling=SamplingOptions(head=LOGFIRE_SAMPLE_RATE),
        )

        if LOGFIRE_TRACE_SQLALCHEMY:
            try:
                logfire.instrument_sqlalchemy()
                logger.info("Logfire: SQLAlchemy instrumentation enabled")
            except Exception as e:
                logger.warning(f"Failed to instrument SQLAlchemy: {e}")

        if LOGFIRE_TRACE_HTTPX:
            try:
                logfire.instrument_httpx()
                logger.info("Logfire: HTTPX instrumentation enabled")
            except Exception as e:
                logger.warning(f"Failed to instrument HTTPX: {e}")

        _initialized = True
        logger.info(
            f"Logfire monitoring initialized: "
            f"project={LOGFIRE_PROJECT_NAME}, "
            f"environment={LOGFIRE_ENVIRONMENT}, "
            f"service={LOGFIRE_SERVICE_NAME}"
        )

    except ImportError:
        logger.warning(
            "Logfire is enabled but 'logfire' package is not installed. " "Install it with: pip install logfire"
        )
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)


@contextmanager
def trace_span(name: str, **attributes: Any) -> Iterator[None]:
    """
    Wrap a block in a Logfire span when monitoring is active.

    Args:
        name: Span name
        **attributes: Span attributes
    """
    if not _initialized:
        yield
        return

    import logfire

    with logfire.span(name, **attributes):
        yield


def log_training_pass(samples: int, loss: Optional[float], duration_ms: float) -> None:
    """
    Log a completed scorer training pass.

    Args:
        samples: Number of replayed events used by the pass
        loss: Mean weighted loss of the pass, if any batch ran
        duration_ms: Pass duration in milliseconds
    """
    if not _initialized:
        return
    try:
        import logfire

        logfire.info("Scorer training pass completed", samples=samples, loss=loss, duration_ms=duration_ms)
    except Exception:
        logger.debug(f"Could not log training pass to Logfire: samples={samples}")


def log_degraded(operation: str, fallback: str, reason: str) -> None:
    """
    Log a degraded response that took a fallback path.

    Args:
        operation: The engine operation (search, next_step, ...)
        fallback: The fallback path taken
        reason: Why the primary path was unavailable
    """
    if not _initialized:
        return
    try:
        import logfire

        logfire.warn("Degraded response", operation=operation, fallback=fallback, reason=reason)
    except Exception:
        logger.debug(f"Could not log degraded response to Logfire: operation={operation}")
