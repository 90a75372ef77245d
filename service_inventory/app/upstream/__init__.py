"""
Upstream adapter package for the Inventory Service.

Wraps the slow, rate-limited reporting API. The adapter owns:

- Authentication and the report URL
- The hard request timeout and the retry policy
- Mapping HTTP failures onto the shared upstream error types

It returns raw rows only; normalization happens in ``transform``.
"""

from .report_client import ReportApiClient, default_retry_policy

__all__ = ["ReportApiClient", "default_retry_policy"]
