"""
Cache store package for the Inventory Service.

Holds one envelope per logical view. Envelopes are replaced wholesale and
never patched in place.
"""

from .redis_store import RedisEnvelopeStore, StoreResult

__all__ = ["RedisEnvelopeStore", "StoreResult"]
