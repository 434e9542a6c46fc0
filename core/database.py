"""
Staging database engine management with SQLAlchemy async
"""

from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_staging_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine used for run-scoped staging tables.

    Each pull runs in its own short-lived process, so connections are not
    pooled between runs.
    """
    database_url = url or settings.STAGING_DATABASE_URL
    logger.debug(f"Creating staging engine for {database_url.split('@')[-1]}")
    return create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,
    )
