"""
Reporting API client for the Inventory Service.
"""

import asyncio
import csv
import io
import time
from typing import Any, Callable, Awaitable, Dict, List, Optional

import httpx

from shared.errors import (
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
    UpstreamAuthFailure,
    UpstreamMalformed,
    UpstreamRateLimited,
)
from shared.logging import get_logger
from shared.retry import RetryPolicy
from ..transform import RawRecord


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_MIN_INTERVAL_SECONDS = 0.5

# Wrapper keys some report exports put around the row list
ROW_CONTAINER_KEYS = ("data", "rows", "items")


def default_retry_policy(backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS, **kwargs) -> RetryPolicy:
    """One retry, fixed backoff, only for timeouts and transient network failures."""
    return RetryPolicy.fixed(
        max_attempts=2,
        delay=backoff_seconds,
        retry_on=(UpstreamError,),
        should_retry=lambda exc: getattr(exc, "retryable", False),
        name="upstream",
        **kwargs
    )


class ReportApiClient:
    """Client for the upstream inventory report."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        *,
        report_path: str = "/report/inventory",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics=None,
    ):
        self.base_url = base_url.rstrip('/')
        self.report_path = report_path
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or default_retry_policy()
        self.min_interval_seconds = min_interval_seconds
        self.metrics = metrics
        self.logger = get_logger("inventory.upstream")

        self._auth = httpx.BasicAuth(api_key, api_secret) if api_key and api_secret else None
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._throttle_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None

    @property
    def report_url(self) -> str:
        """Report endpoint; streaming pivot URLs are rewritten to the tabular variant."""
        if self.report_path.startswith(("http://", "https://")):
            url = self.report_path
        else:
            url = f"{self.base_url}/{self.report_path.lstrip('/')}"
        return url.replace("pivotTableStream", "pivotTable")

    async def fetch_all(self) -> List[RawRecord]:
        """Fetch every report row, retrying once on timeouts and transient failures."""
        if self._auth is None:
            raise UpstreamAuthFailure("Upstream credentials not configured")

        return await self.retry_policy.run(self._fetch_once)

    async def _throttle(self):
        """Space consecutive requests by at least ``min_interval_seconds``."""
        async with self._throttle_lock:
            if self._last_request_at is not None:
                wait = self._last_request_at + self.min_interval_seconds - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_request_at = self._clock()

    async def _fetch_once(self) -> List[RawRecord]:
        await self._throttle()
        start = time.perf_counter()
        outcome = "ok"
        try:
            response = await asyncio.wait_for(self._request(), timeout=self.timeout_seconds)
            rows = self._parse_response(response)
        except asyncio.TimeoutError:
            outcome = "UPSTREAM_TIMEOUT"
            self.logger.warning("Upstream request timed out", timeout_seconds=self.timeout_seconds)
            raise UpstreamTimeout(f"No response within {self.timeout_seconds}s")
        except httpx.TimeoutException as exc:
            outcome = "UPSTREAM_TIMEOUT"
            self.logger.warning("Upstream request timed out", error=str(exc))
            raise UpstreamTimeout(str(exc) or "Request timed out")
        except httpx.TransportError as exc:
            outcome = "UPSTREAM_UNAVAILABLE"
            self.logger.warning("Upstream transport error", error=str(exc))
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__)
        except httpx.DecodingError as exc:
            outcome = "UPSTREAM_MALFORMED"
            self.logger.warning("Upstream body could not be decoded", error=str(exc))
            raise UpstreamMalformed(f"Body could not be decoded: {exc}")
        except httpx.RequestError as exc:
            outcome = "UPSTREAM_UNAVAILABLE"
            self.logger.warning("Upstream request failed", error=str(exc), error_type=exc.__class__.__name__)
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__)
        except UpstreamError as exc:
            outcome = exc.code
            raise
        finally:
            self._record_metrics(outcome, time.perf_counter() - start)

        self.logger.info("Upstream report fetched", rows=len(rows))
        return rows

    async def _request(self) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
            auth=self._auth,
        ) as client:
            return await client.get(
                self.report_url,
                params={"format": "jsonObject"},
                headers={"Accept": "application/json, text/csv"},
            )

    def _parse_response(self, response: httpx.Response) -> List[RawRecord]:
        status = response.status_code

        if status in (401, 403):
            raise UpstreamAuthFailure(
                f"Credentials rejected ({status})",
                details={"status_code": status}
            )
        if status == 429:
            raise UpstreamRateLimited(
                details={"status_code": status, "retry_after": response.headers.get("Retry-After")}
            )
        if status == 408 or status >= 500:
            raise UpstreamUnavailable(
                f"Unexpected status {status}",
                details={"status_code": status}
            )
        if status != 200:
            raise UpstreamMalformed(
                f"Unexpected status {status}",
                details={"status_code": status, "body": response.text[:500]}
            )

        content_type = response.headers.get("content-type", "")
        if "csv" in content_type:
            return self._parse_csv(response.text)
        return self._parse_json(response)

    def _parse_json(self, response: httpx.Response) -> List[RawRecord]:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamMalformed(f"Body is not JSON: {exc}")

        if isinstance(data, dict):
            for key in ROW_CONTAINER_KEYS:
                if isinstance(data.get(key), list):
                    data = data[key]
                    break

        if not isinstance(data, list):
            raise UpstreamMalformed(
                "Report body is not a list of rows",
                details={"type": type(data).__name__}
            )
        return data

    @staticmethod
    def _parse_csv(text: str) -> List[Dict[str, Optional[str]]]:
        reader = csv.DictReader(io.StringIO(text.strip()))
        if not reader.fieldnames:
            return []
        return [
            {key: (value if value != "" else None) for key, value in row.items() if key is not None}
            for row in reader
        ]

    def _record_metrics(self, outcome: str, duration: float):
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter("inventory_upstream_calls_total", outcome=outcome)
            self.metrics.observe_histogram("inventory_upstream_fetch_duration_seconds", duration)
        except Exception as exc:  # pragma: no cover - metrics failures never break fetches
            self.logger.debug("Failed to record upstream metrics", error=str(exc))
