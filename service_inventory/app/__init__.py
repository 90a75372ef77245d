"""
Inventory Service package for the Inventory Cache Layer.

The service fronts the slow, rate-limited upstream inventory report with a
Redis-backed cache:
- Cache-first reads with single-flight refreshes per key
- Stale fallback when upstream fails
- Filtered views (search, vendor, low stock) over the cached snapshot
- Health classification of the store and upstream

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.orchestrator: Cache-first state machine.
- app.cache: Redis envelope store.
- app.upstream: Report API client.
- app.transform: Raw row normalization.
- app.query: Filtered views.
- app.health: Fetch counters and health classification.
"""
