"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    errors          — exception hierarchy & handlers
    middleware      — request logging / request ids
    health          — health check aggregation
    database        — async SQLAlchemy engine and session factory
"""
