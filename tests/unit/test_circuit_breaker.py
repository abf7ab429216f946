"""
Unit tests for shared/circuit_breaker.py.

Coverage:
- Opens after fail_max consecutive system errors, then fails fast
- Client (4xx) errors never count as failures
- Half-open probe after reset_timeout closes the circuit on success
"""

import time
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pybreaker
import pytest

from shared.circuit_breaker import (
    _opened_at,
    call_with_breaker,
    get_breaker_status,
    get_circuit_breaker,
    is_client_error,
)


class ClientError(Exception):
    status_code = 404


@pytest.fixture
def breaker():
    return get_circuit_breaker(f"test-{uuid4()}", fail_max=2, reset_timeout=60, exclude=[is_client_error])


class TestCallWithBreaker:
    async def test_success_passes_through(self, breaker):
        func = AsyncMock(return_value="ok")
        assert await call_with_breaker(breaker, func, 1, key="v") == "ok"
        func.assert_awaited_once_with(1, key="v")

    async def test_opens_after_consecutive_failures(self, breaker):
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await call_with_breaker(breaker, failing)

        assert breaker.current_state == pybreaker.STATE_OPEN

        with pytest.raises(pybreaker.CircuitBreakerError):
            await call_with_breaker(breaker, failing)
        assert failing.await_count == 2

    async def test_client_errors_do_not_count(self, breaker):
        rejected = AsyncMock(side_effect=ClientError("not found"))

        for _ in range(3):
            with pytest.raises(ClientError):
                await call_with_breaker(breaker, rejected)

        assert breaker.current_state == pybreaker.STATE_CLOSED
        assert breaker.fail_counter == 0

    async def test_success_resets_counter(self, breaker):
        with pytest.raises(ConnectionError):
            await call_with_breaker(breaker, AsyncMock(side_effect=ConnectionError()))
        await call_with_breaker(breaker, AsyncMock(return_value=None))
        assert breaker.fail_counter == 0

    async def test_half_open_probe_closes_circuit(self, breaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await call_with_breaker(breaker, AsyncMock(side_effect=ConnectionError()))

        _opened_at[breaker.name] = time.monotonic() - 61
        assert await call_with_breaker(breaker, AsyncMock(return_value="back")) == "back"

        assert breaker.current_state == pybreaker.STATE_CLOSED

    async def test_failed_probe_reopens(self, breaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await call_with_breaker(breaker, AsyncMock(side_effect=ConnectionError()))

        _opened_at[breaker.name] = time.monotonic() - 61
        with pytest.raises(TimeoutError):
            await call_with_breaker(breaker, AsyncMock(side_effect=TimeoutError()))

        assert breaker.current_state == pybreaker.STATE_OPEN


class TestHelpers:
    def test_is_client_error(self):
        assert is_client_error(ClientError())
        assert is_client_error(SimpleNamespace(resp=SimpleNamespace(status=409)))
        assert not is_client_error(SimpleNamespace(status_code=503))
        assert not is_client_error(ConnectionError())

    def test_status_lists_known_breakers(self, breaker):
        status = get_breaker_status()
        assert status["google_calendar"]["reset_timeout"] == 15
        assert status[breaker.name]["state"] == pybreaker.STATE_CLOSED
