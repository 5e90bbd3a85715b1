"""app.integrations - External service gateway modules.

All outbound HTTP calls go through a gateway in this package, never via
bare `requests` calls in services or blueprints. Every gateway call is:
  - Authenticated (credentials injected by the gateway)
  - Retried with backoff on transport errors and 5xx
  - Returned as a result object; gateways never raise into core logic

Current gateways:
  collab_gateway.CollabGateway - collaborative document store (proposal fragments)
"""
