"""
Generic Cache Server service package.

The service mediates outbound HTTP calls through an in-memory cache keyed
by a caller-chosen name:

- Authentication: static access tokens checked before any mutation or fetch
- Caching: in-memory entries with per-entry expiry, swept lazily on lookup
- Mediation: cache hit returns stored data, a miss fetches and stores

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.adapters: HTTP client for outbound requests.
- app.caching: Cache entries and the in-memory store.
- app.domain: Access control, request models and the mediator.
"""
