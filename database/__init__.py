"""Database module for managing connections to PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

SSL_MODES_REQUIRING_TLS = ('require', 'verify-ca', 'verify-full')

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for managed PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.
    
    Args:
        db_url: Database connection URL
        
    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    
    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '60000',  # 1 minute
            'timezone': 'UTC',
        }
    }
    
    sslmode = params.get('sslmode', ['disable'])[0]
    if sslmode in SSL_MODES_REQUIRING_TLS:
        kwargs['ssl'] = _get_ssl_context()
            
    return kwargs

def _strip_ssl_params(db_url: str) -> str:
    """Remove sslmode from the URL since the SSL context is passed explicitly."""
    parsed = urlparse(db_url)
    params = {
        key: values[0]
        for key, values in parse_qs(parsed.query).items()
        if key not in ('sslmode', 'ssl')
    }
    return urlunparse(parsed._replace(query=urlencode(params)))

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Initialize the database connection pool and schema.
    
    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop and recreate all tables
        
    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool, _schema_manager
    
    if _pool is not None:
        return
    
    try:
        # Import here to avoid circular imports
        from config import get_settings
        
        url = db_url or get_settings().get('db_url')
        if not url:
            raise ValueError("Database URL not provided")
        
        _pool = await asyncpg.create_pool(
            _strip_ssl_params(url),
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            **_get_connection_kwargs(url)
        )
        
        _schema_manager = SchemaManager(_pool)
        
        if force_recreate:
            logger.info("Force recreate requested. Dropping existing tables...")
            async with _pool.acquire() as conn:
                tables = await conn.fetch(
                    '''
                    SELECT tablename 
                    FROM pg_tables 
                    WHERE schemaname = 'public'
                    '''
                )
                for table in tables:
                    await conn.execute(
                        f'DROP TABLE IF EXISTS "{table["tablename"]}" CASCADE'
                    )
                
        await _schema_manager.initialize()
        
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool is not None:
            await _pool.close()
        _pool = None
        _schema_manager = None
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.
    
    Returns:
        The connection pool
        
    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager
    
    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError', 'SchemaManager']
