"""
Circuit Breaker Pattern Implementation.

Protects checkout and post-payment work when PayTR, Klaviyo or BizimHesap
are down. Uses Redis for distributed state across API workers and Celery.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately
- HALF_OPEN: Testing recovery with limited requests
"""

from enum import Enum
from datetime import datetime, timedelta
import logging
import httpx
import asyncio
from typing import Callable, Any

from storefront.redis import get_redis_client
from storefront.config import get_settings

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open and rejecting calls."""

    def __init__(self, service_name: str, retry_after: int = 60):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"{service_name} circuit breaker is OPEN. "
            f"Service experiencing issues. Try again in {retry_after}s"
        )


class CircuitBreaker:
    """
    Distributed circuit breaker using Redis for state.

    Usage:
        breaker = CircuitBreaker("paytr")
        result = await breaker.call(request_fn, payload)
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        timeout_seconds: int = 60,
        half_open_max_calls: int = 3
    ):
        """
        Args:
            service_name: Name of the external service (paytr, klaviyo, bizimhesap)
            failure_threshold: Number of failures before opening circuit
            timeout_seconds: Time to wait before attempting recovery
            half_open_max_calls: Number of test calls allowed in half-open state
        """
        self.redis = get_redis_client()
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.timeout = timeout_seconds
        self.half_open_max_calls = half_open_max_calls

        self.key_state = f"circuit_breaker:{service_name}:state"
        self.key_failures = f"circuit_breaker:{service_name}:failures"
        self.key_last_failure = f"circuit_breaker:{service_name}:last_failure"
        self.key_half_open_calls = f"circuit_breaker:{service_name}:half_open_calls"
        self.key_timeout_multiplier = f"circuit_breaker:{service_name}:timeout_multiplier"

    async def _send_slack_alert(self, message: str, level: str = "warning"):
        settings = get_settings()
        if not settings.SLACK_WEBHOOK_URL:
            logger.info(f"Slack alert (skipped - no webhook): {message}")
            return

        payload = {
            "channel": settings.SLACK_ALERTS_CHANNEL,
            "attachments": [{
                "fallback": message,
                "color": "#ff0000" if level == "error" else "#36a64f",
                "title": f"Circuit Breaker Alert: {self.service_name.upper()}",
                "text": message,
                "footer": settings.APP_NAME,
                "ts": datetime.utcnow().timestamp()
            }]
        }

        try:
            async with httpx.AsyncClient() as client:
                await client.post(settings.SLACK_WEBHOOK_URL, json=payload, timeout=5.0)
        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}")

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        state = self._get_state()

        if state == CircuitState.OPEN:
            if self._should_attempt_reset():
                await self._transition_to_half_open()
            else:
                logger.warning(f"Circuit breaker OPEN for {self.service_name}, rejecting call")
                raise CircuitBreakerOpenError(self.service_name, self._current_timeout())

        if state == CircuitState.HALF_OPEN:
            if not await self._can_attempt_half_open_call():
                raise CircuitBreakerOpenError(self.service_name, self.timeout)

        try:
            result = await func(*args, **kwargs)
            await self._record_success()
            return result
        except Exception as e:
            await self._record_failure(e)
            raise

    def _get_state(self) -> CircuitState:
        state = self.redis.get(self.key_state)
        if state:
            return CircuitState(state)
        return CircuitState.CLOSED

    async def _record_success(self):
        """Reset failure count, transition to CLOSED if in HALF_OPEN."""
        state = self._get_state()

        self.redis.delete(self.key_failures)
        self.redis.delete(self.key_last_failure)
        self.redis.delete(self.key_half_open_calls)

        if state == CircuitState.HALF_OPEN:
            self.redis.delete(self.key_timeout_multiplier)
            self.redis.set(self.key_state, CircuitState.CLOSED.value)
            logger.info(f"Circuit breaker CLOSED for {self.service_name} - service recovered")
            asyncio.create_task(self._send_slack_alert(
                f"Service {self.service_name} has recovered. Circuit is now CLOSED.", "info"
            ))

    async def _record_failure(self, error: Exception):
        """Increment failure count, transition to OPEN if threshold exceeded."""
        if not self._is_circuit_breaker_error(error):
            return

        failures = self.redis.incr(self.key_failures)
        self.redis.set(self.key_last_failure, datetime.utcnow().isoformat())

        logger.warning(
            f"Circuit breaker recorded failure {failures}/{self.failure_threshold} "
            f"for {self.service_name}: {error}"
        )

        if failures >= self.failure_threshold:
            await self._transition_to_open()

    def _is_circuit_breaker_error(self, error: Exception) -> bool:
        """Transport failures, 5xx and 429 count; other 4xx and local errors do not."""
        if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
            return True
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return status >= 500 or status == 429
        return False

    def _current_timeout(self) -> int:
        m_raw = self.redis.get(self.key_timeout_multiplier)
        multiplier = int(m_raw) if m_raw else 1
        return min(self.timeout * (2 ** (multiplier - 1)), 86400)

    async def _transition_to_open(self):
        self.redis.set(self.key_state, CircuitState.OPEN.value)

        # Exponential backoff across consecutive trips
        self.redis.incr(self.key_timeout_multiplier)
        current_timeout = self._current_timeout()

        self.redis.expire(self.key_state, current_timeout * 2)
        logger.error(
            f"Circuit breaker OPENED for {self.service_name} - service appears down. "
            f"Timeout: {current_timeout}s"
        )

        asyncio.create_task(self._send_slack_alert(
            f"Service {self.service_name} is DOWN. Circuit breaker is now OPEN for {current_timeout}s.",
            "error",
        ))

    async def _transition_to_half_open(self):
        self.redis.set(self.key_state, CircuitState.HALF_OPEN.value)
        self.redis.set(self.key_half_open_calls, 0)
        logger.info(f"Circuit breaker HALF-OPEN for {self.service_name} - testing recovery")

    def _should_attempt_reset(self) -> bool:
        last_failure = self.redis.get(self.key_last_failure)
        if not last_failure:
            return True

        elapsed = datetime.utcnow() - datetime.fromisoformat(last_failure)
        return elapsed > timedelta(seconds=self._current_timeout())

    async def _can_attempt_half_open_call(self) -> bool:
        calls = self.redis.get(self.key_half_open_calls)
        current_calls = int(calls) if calls else 0

        if current_calls >= self.half_open_max_calls:
            await self._transition_to_open()
            return False

        self.redis.incr(self.key_half_open_calls)
        return True

    def get_status(self) -> dict:
        """Current circuit breaker status for monitoring."""
        failures = self.redis.get(self.key_failures)
        return {
            "service": self.service_name,
            "state": self._get_state().value,
            "failure_count": int(failures) if failures else 0,
            "failure_threshold": self.failure_threshold,
            "last_failure": self.redis.get(self.key_last_failure),
            "timeout_seconds": self.timeout,
        }


# =============================================================================
# Pre-configured Circuit Breakers
# =============================================================================

def get_paytr_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the PayTR token API."""
    return CircuitBreaker(
        service_name="paytr",
        failure_threshold=5,
        timeout_seconds=30
    )


def get_klaviyo_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for Klaviyo API."""
    return CircuitBreaker(
        service_name="klaviyo",
        failure_threshold=5,
        timeout_seconds=60
    )


def get_bizimhesap_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for BizimHesap invoicing."""
    return CircuitBreaker(
        service_name="bizimhesap",
        failure_threshold=3,
        timeout_seconds=120
    )


def get_all_circuit_statuses() -> dict:
    return {
        "paytr": get_paytr_circuit_breaker().get_status(),
        "klaviyo": get_klaviyo_circuit_breaker().get_status(),
        "bizimhesap": get_bizimhesap_circuit_breaker().get_status(),
    }
