"""
Forwarding cache service package for the RedditView access layer.

The forwarder sits between client applications and the upstream JSON
content API:
- Routing: inbound paths are mapped to the API, search or legacy host
- Caching: successful responses are kept for a bounded time
- Rate limit recovery: throttled calls are retried with exponential backoff
- Sanitization: framing headers are stripped and CORS headers added

Structure:
- app.main: FastAPI app, local endpoints and the catch-all forwarder route.
- app.routing: Pure inbound path to upstream target mapping.
- app.caching: In-memory TTL response cache.
- app.adapters: HTTP client for the upstream API.
- app.domain: Forwarding state machine and response sanitizer.
"""
