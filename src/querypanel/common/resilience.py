"""
Resilience Module: Circuit Breaker for the remote query service.

The generation, chart and ingest endpoints own their own retry policy; this
layer never retries a transport failure. The breaker only makes repeated
failures fail fast instead of waiting on a dead endpoint.
"""
import pybreaker
from typing import Callable, List, Optional, Union

from querypanel.common.errors import TransportError
from querypanel.common.logger import get_logger
from querypanel.common.settings import settings

logger = get_logger("resilience")


class ObservabilityListener(pybreaker.CircuitBreakerListener):
    """Listener to export circuit breaker state changes and failures to logs."""

    def state_change(self, cb, old_state, new_state):
        old_name = old_state.name if old_state else None
        logger.warning(
            f"Circuit Breaker '{cb.name}' changed state: {old_name} -> {new_state.name}"
        )

    def failure(self, cb, exc):
        logger.error(
            f"Circuit Breaker '{cb.name}' recorded failure: {type(exc).__name__}: {exc}"
        )


def create_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 60,
    exclude: Optional[List[Union[type, Callable[[BaseException], bool]]]] = None
) -> pybreaker.CircuitBreaker:
    """Factory to create a configured Circuit Breaker."""
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[ObservabilityListener()],
        exclude=exclude or []
    )


def is_client_error(exc: BaseException) -> bool:
    """True for 4xx responses, which do not count against the breaker."""
    return isinstance(exc, TransportError) and exc.status_code is not None and exc.status_code < 500


# API Breaker: remote query service (generation, chart, ingest)
API_BREAKER = create_breaker(
    name="API_BREAKER",
    fail_max=settings.breaker_fail_max,
    reset_timeout=settings.breaker_reset_timeout_sec,
    exclude=[is_client_error],
)
