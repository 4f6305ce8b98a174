"""
Core package — cross-cutting concerns.

Modules:
    config      — environment variables & settings
    logging     — structured JSON / pretty logging
    errors      — exception hierarchy & handlers
    middleware  — request id, timing, access log
    health      — health check aggregation
"""
