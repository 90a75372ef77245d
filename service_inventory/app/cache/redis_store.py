"""
Redis-backed envelope store for the Inventory Service.

Every operation is total: connection failures, timeouts and unreadable
payloads come back as a failed ``StoreResult`` carrying ``StoreUnavailable``
instead of raising, so callers can route around the cache.
"""

import asyncio
import json
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

import redis.asyncio as redis

from shared.config import redact_url
from shared.errors import StoreUnavailable
from shared.logging import get_logger
from ..models import CacheEnvelope


T = TypeVar("T")

HEALTH_WINDOW = 3


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of one store operation."""
    value: Optional[T] = None
    error: Optional[StoreUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _decode_envelope(raw: Any) -> Optional[CacheEnvelope]:
    # A corrupt value counts against store health like any other failure
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return CacheEnvelope.from_storage(json.loads(raw))


class RedisEnvelopeStore:
    """Typed get/set/delete/exists over Redis with a hard per-call timeout."""

    def __init__(
        self,
        redis_url: str,
        *,
        timeout_seconds: float = 2.0,
        client: Optional[redis.Redis] = None,
        metrics=None,
    ):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.logger = get_logger("inventory.cache.redis")
        self._redis: Optional[redis.Redis] = client
        self._outcomes = deque(maxlen=HEALTH_WINDOW)
        self._outcomes_lock = threading.Lock()

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
            )
            self.logger.info("Redis client created", redis_url=redact_url(self.redis_url))
        return self._redis

    async def close(self):
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis client closed")

    def _record_outcome(self, operation: str, success: bool):
        with self._outcomes_lock:
            self._outcomes.append(success)
        if not success and self.metrics is not None:
            try:
                self.metrics.increment_counter("inventory_store_errors_total", operation=operation)
            except Exception as exc:  # pragma: no cover - metrics failures never break store calls
                self.logger.debug("Failed to record store metrics", error=str(exc))

    def recent_outcomes(self) -> List[bool]:
        """Success flags of the most recent operations, oldest first."""
        with self._outcomes_lock:
            return list(self._outcomes)

    async def _run(
        self,
        operation: str,
        key: Optional[str],
        call: Callable[[redis.Redis], Awaitable[Any]],
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> StoreResult:
        try:
            value = await asyncio.wait_for(call(self._get_redis()), timeout=self.timeout_seconds)
            if decode is not None:
                value = decode(value)
        except asyncio.TimeoutError:
            error = StoreUnavailable(
                operation,
                f"timed out after {self.timeout_seconds}s",
                details={"key": key},
            )
        except Exception as exc:
            error = StoreUnavailable(operation, str(exc), details={"key": key})
        else:
            self._record_outcome(operation, True)
            return StoreResult(value=value)

        self._record_outcome(operation, False)
        self.logger.warning("Cache store operation failed", operation=operation, key=key, error=error.message)
        return StoreResult(error=error)

    async def get(self, key: str) -> StoreResult[CacheEnvelope]:
        """Read the envelope stored under ``key``; ``value`` is ``None`` when absent."""
        return await self._run("get", key, lambda client: client.get(key), decode=_decode_envelope)

    async def set(self, key: str, envelope: CacheEnvelope, expire_seconds: Optional[int] = None) -> StoreResult[bool]:
        """Replace the envelope under ``key`` wholesale."""
        try:
            payload = json.dumps(envelope.to_storage())
        except (TypeError, ValueError) as exc:
            self._record_outcome("serialize", False)
            return StoreResult(error=StoreUnavailable("set", f"unserializable envelope: {exc}", details={"key": key}))

        result = await self._run(
            "set",
            key,
            lambda client: client.set(key, payload, ex=expire_seconds),
        )
        if result.ok:
            self.logger.debug("Cached envelope", key=key, records=len(envelope.payload), expire_seconds=expire_seconds)
            return StoreResult(value=True)
        return result

    async def delete(self, key: str) -> StoreResult[bool]:
        """Remove ``key``; ``value`` tells whether something was deleted."""
        result = await self._run("delete", key, lambda client: client.delete(key))
        if result.ok:
            return StoreResult(value=bool(result.value))
        return result

    async def exists(self, key: str) -> StoreResult[bool]:
        result = await self._run("exists", key, lambda client: client.exists(key))
        if result.ok:
            return StoreResult(value=bool(result.value))
        return result

    async def ping(self) -> StoreResult[bool]:
        """Round-trip to the backend; used by health checks."""
        result = await self._run("ping", None, lambda client: client.ping())
        if result.ok:
            return StoreResult(value=bool(result.value))
        return result
