"""Database module for the Postgres document backend.

This module handles:
- Connection pool initialization with retries
- Schema management for the documents table
- Connection lifecycle
"""

import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import backoff
import asyncpg

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for verified TLS connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    TLS is enabled when the URL asks for it with sslmode=require,
    verify-ca or verify-full.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    sslmode = params.get('sslmode', ['disable'])[0]

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '30000',  # 30 seconds
        }
    }
    if sslmode in ('require', 'verify-ca', 'verify-full'):
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

def _strip_query(db_url: str) -> str:
    """Drop query parameters asyncpg would otherwise interpret itself."""
    return db_url.split('?', 1)[0]

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: str) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Database URL

    Returns:
        The connection pool

    Raises:
        DatabaseError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool

    if _pool is not None:
        return _pool

    if not db_url:
        raise DatabaseError("Database URL not provided")

    try:
        conn_kwargs = _get_connection_kwargs(db_url)

        _pool = await asyncpg.create_pool(
            _strip_query(db_url),
            min_size=1,
            max_size=10,
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=30.0,
            **conn_kwargs
        )

        await SchemaManager(_pool).initialize()
        logger.info("Database initialized")
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        DatabaseError: If pool hasn't been initialized
    """
    if not _pool:
        raise DatabaseError("Database pool not initialized; call init_db() first")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool:
        await _pool.close()
        _pool = None

# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError']
