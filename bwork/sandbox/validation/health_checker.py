"""
Health Checker - Poll the sandbox dev server over HTTP.

check_health() performs one bounded GET; wait_for_healthy() retries it a
fixed number of times with a sleep between attempts. Neither raises:
timeouts, connection errors and malformed URLs come back as failed HealthCheckResults
whose `error` explains why ("Timeout after 10000ms", ...).

Worst case, wait_for_healthy(url, n, interval, timeout) returns within
n * (interval + timeout) because each attempt is wrapped in its own
overall deadline.
"""

import asyncio
import logging
import re
import time
from typing import Optional

import httpx

from bwork.sandbox.cancellation import CancellationToken, cancellable_sleep
from bwork.sandbox.contracts import ClassifiedError, ErrorCategory, Fixability, HealthCheckResult

logger = logging.getLogger("bwork.sandbox.validation.health")

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
VITE_OVERLAY_MARKERS = ("vite-error-overlay", '<pre class="message"')


class HealthChecker:
    """
    HTTP health checks against a sandbox URL.

    Usage:
        checker = HealthChecker()
        result = await checker.wait_for_healthy(url, max_attempts=5)
        if not result.passed:
            print(result.error)

    Args:
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout_s,
            follow_redirects=True,
            headers={"Accept": ACCEPT_HTML},
        )

    async def _get(self, url: str, timeout_ms: int) -> httpx.Response:
        timeout_s = timeout_ms / 1000
        async with self._client(timeout_s) as client:
            return await asyncio.wait_for(client.get(url), timeout=timeout_s)

    async def check_health(self, url: str, timeout_ms: int = 30000) -> HealthCheckResult:
        """Single GET; passes on any 2xx status."""
        start = time.time()
        try:
            response = await self._get(url, timeout_ms)
            elapsed = (time.time() - start) * 1000
            logger.debug(f"Health {url}: HTTP {response.status_code} in {elapsed:.0f}ms")
            return HealthCheckResult(
                passed=response.is_success,
                status_code=response.status_code,
                response_time_ms=elapsed,
                error=None if response.is_success else f"HTTP {response.status_code}",
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return HealthCheckResult(
                passed=False,
                response_time_ms=(time.time() - start) * 1000,
                error=f"Timeout after {timeout_ms}ms",
            )
        except httpx.RequestError as e:
            return HealthCheckResult(
                passed=False,
                response_time_ms=(time.time() - start) * 1000,
                error=f"Connection error: {e.__class__.__name__}: {e}",
            )
        except httpx.InvalidURL as e:
            return HealthCheckResult(
                passed=False,
                response_time_ms=(time.time() - start) * 1000,
                error=f"Invalid URL: {e}",
            )

    async def wait_for_healthy(
        self,
        url: str,
        max_attempts: int = 10,
        interval_ms: int = 2000,
        timeout_ms: int = 10000,
        cancel_token: Optional[CancellationToken] = None,
    ) -> HealthCheckResult:
        """
        Retry check_health() up to max_attempts times.

        Sleeps interval_ms between attempts (not after the last one) and
        returns the first passing result or the last failing one.
        """
        logger.info(f"Waiting for {url} to become healthy (max {max_attempts} attempts)")
        result = HealthCheckResult(passed=False, attempts=0, error="Health check not attempted")

        for attempt in range(1, max_attempts + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            result = await self.check_health(url, timeout_ms)
            result.attempts = attempt
            if result.passed:
                logger.info(f"Healthy after {attempt} attempt(s) ({result.response_time_ms:.0f}ms)")
                return result
            if attempt < max_attempts:
                await cancellable_sleep(interval_ms / 1000, cancel_token)

        logger.warning(f"{url} not healthy after {max_attempts} attempts: {result.error}")
        return result

    async def check_for_vite_errors(self, url: str, timeout_ms: int = 10000) -> Optional[ClassifiedError]:
        """
        Look for the Vite error overlay in the served page.

        Returns:
            A RUNTIME_ERROR when the overlay (or an HTTP failure) is seen,
            None when the page looks clean.
        """
        try:
            response = await self._get(url, timeout_ms)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ClassifiedError(ErrorCategory.TIMEOUT, f"Timeout after {timeout_ms}ms", Fixability.USER)
        except httpx.RequestError as e:
            return ClassifiedError(ErrorCategory.TIMEOUT, f"Connection error: {e}", Fixability.USER)
        except httpx.InvalidURL as e:
            return ClassifiedError(ErrorCategory.PROVIDER_ERROR, f"Invalid URL: {e}", Fixability.USER)

        if not response.is_success:
            return ClassifiedError(ErrorCategory.RUNTIME_ERROR, f"HTTP {response.status_code}", Fixability.AI)

        html = response.text
        if any(marker in html for marker in VITE_OVERLAY_MARKERS):
            match = re.search(r'class="message"[^>]*>([^<]+)', html)
            message = match.group(1).strip() if match else "Vite error detected"
            return ClassifiedError(ErrorCategory.RUNTIME_ERROR, message, Fixability.AI)
        return None


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
health_checker = HealthChecker()
