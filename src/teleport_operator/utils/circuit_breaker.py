"""
Circuit breaker for access proxy calls.

This module wraps aiobreaker to stop hammering an access proxy that keeps
failing. State changes are mirrored into a Prometheus gauge.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

import aiobreaker
from aiobreaker.state import CircuitHalfOpenState, CircuitOpenState
from opentelemetry import trace

from ..observability.metrics import PROXY_CIRCUIT_BREAKER_STATE

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

CircuitBreakerError = aiobreaker.CircuitBreakerError


def _state_value(state: Any) -> int:
    """Map a breaker state to the gauge value (0=closed, 1=open, 2=half-open)."""
    if isinstance(state, CircuitOpenState):
        return 1
    if isinstance(state, CircuitHalfOpenState):
        return 2
    return 0


class _MetricsListener(aiobreaker.CircuitBreakerListener):
    def __init__(self, proxy: str):
        self.proxy = proxy

    def state_change(self, breaker, old, new):
        old_name = getattr(old, "name", type(old).__name__)
        new_name = getattr(new, "name", type(new).__name__)
        logger.warning(
            f"Access proxy circuit breaker state changed: {old_name} -> {new_name} "
            f"(proxy={self.proxy})"
        )
        PROXY_CIRCUIT_BREAKER_STATE.labels(proxy=self.proxy).set(_state_value(new))


class ProxyCircuitBreaker:
    """Circuit breaker guarding every call to one access proxy address."""

    def __init__(self, proxy: str, fail_max: int, timeout_duration: int):
        """
        Initialize circuit breaker.

        Args:
            proxy: Access proxy address, used as metric label
            fail_max: Number of consecutive failures before opening the circuit
            timeout_duration: Seconds to wait before a trial call (half-open)
        """
        self.proxy = proxy
        self._breaker = aiobreaker.CircuitBreaker(
            fail_max=fail_max,
            timeout_duration=timedelta(seconds=timeout_duration),
            listeners=[_MetricsListener(proxy)],
        )
        PROXY_CIRCUIT_BREAKER_STATE.labels(proxy=proxy).set(0)

    async def call(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Call an async function with circuit breaker protection.

        Raises:
            aiobreaker.CircuitBreakerError: If the circuit is open
            Exception: Whatever the function raises
        """
        with tracer.start_as_current_span("proxy_circuit_breaker_call") as span:
            span.set_attribute("circuit_breaker.proxy", self.proxy)
            span.set_attribute("circuit_breaker.state", self.current_state)
            try:
                return await self._breaker.call_async(func, *args, **kwargs)
            except Exception as e:
                span.set_attribute("error", True)
                span.record_exception(e)
                raise

    @property
    def current_state(self) -> str:
        return self._breaker.current_state.name.lower()
