#!/usr/bin/env python3
"""
Warm the Redis inventory cache from the upstream report.

This helper mirrors the ``warmUpCache`` cache action but can be executed from
cron, a developer workstation or a CI job. It performs one forced refresh of
``inventory:all`` and prints the resulting fetch metrics.
"""

import argparse
import asyncio
import json
from pathlib import Path
import sys
import os

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from shared.config import get_config  # noqa: E402
from shared.logging import configure_logging  # noqa: E402
from service_inventory.app.cache import RedisEnvelopeStore  # noqa: E402
from service_inventory.app.orchestrator import CacheService  # noqa: E402
from service_inventory.app.upstream import ReportApiClient, default_retry_policy  # noqa: E402


async def warm(*, redis_url: str, ttl_minutes: int, dry_run: bool) -> dict:
    """Execute cache warming and return the fetch metrics."""
    config = get_config("inventory-warmer", 0)
    configure_logging("inventory-warmer", config.log_level)

    store = RedisEnvelopeStore(redis_url, timeout_seconds=config.store_timeout_seconds)
    upstream = ReportApiClient(
        config.upstream_base_url,
        config.upstream_api_key,
        config.upstream_api_secret,
        report_path=config.upstream_report_path,
        timeout_seconds=config.upstream_timeout_seconds,
        retry_policy=default_retry_policy(config.upstream_retry_backoff_seconds),
        min_interval_seconds=config.upstream_min_interval_seconds,
    )

    try:
        if dry_run:
            rows = await upstream.fetch_all()
            return {"dryRun": True, "rows": len(rows), "reportUrl": upstream.report_url}

        service = CacheService(
            store,
            upstream,
            default_ttl_seconds=config.cache_default_ttl_seconds,
            min_ttl_seconds=config.cache_min_ttl_seconds,
            stale_retention_factor=config.cache_stale_retention_factor,
        )
        metrics = await service.warm_up_cache(ttl_seconds=ttl_minutes * 60 if ttl_minutes else None)
        return metrics.to_dict()
    finally:
        await store.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the Redis inventory cache from the upstream report.")
    parser.add_argument("--redis-url", default=os.getenv("INVENTORY_STORE_CONNECTION_STRING", "redis://localhost:6379/0"), help="Redis connection URL")
    parser.add_argument("--ttl", type=int, default=None, help="Freshness window in minutes (default: configured TTL)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch from upstream but do not write to Redis")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        summary = asyncio.run(warm(redis_url=args.redis_url, ttl_minutes=args.ttl, dry_run=args.dry_run))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[inventory-warm] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[inventory-warm] DRY RUN - no Redis writes executed")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    # Stale data was kept but the refresh itself failed
    if summary.get("lastFetchError"):
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
