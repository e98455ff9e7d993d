"""
sitewatch.observability

Observability plumbing for the service itself.

Responsibilities:
- Structured logging configuration.
- Request context propagation and per-request response-time telemetry.
"""

# Package marker.
