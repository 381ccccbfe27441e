"""Observability helpers.

structlog logging with trace/span ids attached, OpenTelemetry spans exported
over OTLP, request-id middleware, and an in-memory metrics snapshot for local
development.
"""
