"""
Circuit Breaker Pattern Implementation.

Provides circuit breaker protection for external service calls (Google
Calendar, Messenger, Twilio) so a provider outage fails fast instead of
stalling every booking and every poller tick.

Circuit breaker states:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is down, requests fail fast without calling the service
- HALF_OPEN: Testing if service recovered, limited requests allowed

Usage:
    from shared.circuit_breaker import calendar_breaker, call_with_breaker

    result = await call_with_breaker(calendar_breaker, my_async_function, *args)
"""

import logging
import time
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class CircuitBreakerLogger(pybreaker.CircuitBreakerListener):
    """Log circuit breaker state changes and failures."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        if new_state.name == "open":
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - "
                f"failing fast for {cb.reset_timeout}s"
            )
        else:
            logger.info(
                f"Circuit breaker '{cb.name}' state: {old_state.name} -> {new_state.name}"
            )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.warning(
            f"Circuit breaker '{cb.name}' recorded failure: {type(exc).__name__}: {exc}"
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_logger_instance = CircuitBreakerLogger()
_opened_at: dict[str, float] = {}


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type | Callable[[Exception], bool]] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a circuit breaker for a service.

    Args:
        name: Unique identifier for the circuit breaker
        fail_max: Number of consecutive failures before opening circuit
        reset_timeout: Seconds before attempting recovery (half-open)
        exclude: Exception types (or predicates) that should NOT count as failures

    Returns:
        CircuitBreaker instance (singleton per name)
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_logger_instance],
        )
        logger.info(
            f"Created circuit breaker '{name}' | "
            f"fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


def is_client_error(exc: Exception) -> bool:
    """HTTP 4xx responses mean the request was rejected, not that the service is down."""
    status = getattr(getattr(exc, "resp", None), "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        return status is not None and 400 <= int(status) < 500
    except (TypeError, ValueError):
        return False


# Google Calendar API - guards free/busy, event upserts and sync listing
calendar_breaker = get_circuit_breaker(
    name="google_calendar",
    fail_max=5,
    reset_timeout=15,
    exclude=[is_client_error],
)

# Outbound messaging (Messenger Graph API, Twilio)
messaging_breaker = get_circuit_breaker(
    name="messaging",
    fail_max=5,
    reset_timeout=60,
)


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Call async function with circuit breaker protection (native asyncio).

    pybreaker's call_async() requires Tornado, so state is driven manually:
    fail fast while OPEN, count system errors, open after ``fail_max``
    consecutive failures, close again on the first success.

    Raises:
        pybreaker.CircuitBreakerError: If circuit is open
        Exception: Any exception raised by func
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        if time.monotonic() - _opened_at.get(breaker.name, 0.0) < breaker.reset_timeout:
            logger.warning(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
            raise pybreaker.CircuitBreakerError(breaker)
        breaker.half_open()

    try:
        result = await func(*args, **kwargs)
    except Exception as e:
        if breaker.is_system_error(e):
            breaker._state_storage.increment_counter()
            for listener in breaker.listeners:
                listener.failure(breaker, e)
            if (
                breaker.current_state == pybreaker.STATE_HALF_OPEN
                or breaker.fail_counter >= breaker.fail_max
            ):
                breaker.open()
                _opened_at[breaker.name] = time.monotonic()
        raise

    if breaker.fail_counter:
        breaker._state_storage.reset_counter()
    if breaker.current_state == pybreaker.STATE_HALF_OPEN:
        breaker.close()
    return result


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """Status of all circuit breakers for health checks."""
    return {
        name: {
            "state": breaker.current_state,
            "fail_counter": breaker.fail_counter,
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
