"""
Core utilities and configuration for the Shopify catalog connector.

Modules:
    config: Process-wide configuration and environment variable management
    database: Staging engine creation
    exceptions: Exception hierarchy and error envelope
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import create_staging_engine
    from core.exceptions import ApiError, build_error_envelope
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "create_staging_engine",
    "setup_logging",
    # Exceptions
    "ConnectorException",
    "ValidationError",
    "ApiError",
    "UnexpectedResponseError",
    "BulkConflictError",
    "InfrastructureError",
    "StagingWriteError",
    "StagingConflictError",
    "build_error_envelope",
]
