"""Ads module for storing and querying paid classified ads.

This module provides functionality for:
- Persisting ads with a unique payment signature
- Looking ads up by id or payment signature
- Filtered, paginated and distance-sorted retrieval
- Removing expired ads
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import asyncpg

from database import get_pool
from .exceptions import (
    AdServiceError,
    AdNotFoundError,
    DuplicatePaymentError,
    PersistenceError,
)
from .geo import bounding_box, filter_by_radius
from .models import SearchFilters

logger = logging.getLogger(__name__)

AD_COLUMNS = (
    'id', 'author', 'title', 'description', 'call_to_action', 'link_url',
    'latitude', 'longitude', 'location', 'min_age', 'max_age', 'interests',
    'tags', 'payment_tx', 'media_key', 'moderation_score', 'visible',
    'created_at', 'expiry'
)

_SELECT_COLUMNS = ', '.join(AD_COLUMNS)

def _split_interests(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]

def row_to_ad(row) -> Dict[str, Any]:
    """Convert a database row to a JSON-friendly ad dictionary."""
    return {
        'id': str(row['id']),
        'author': row['author'],
        'title': row['title'],
        'description': row['description'],
        'call_to_action': row['call_to_action'],
        'link_url': row['link_url'],
        'latitude': row['latitude'],
        'longitude': row['longitude'],
        'location': row['location'],
        'min_age': row['min_age'],
        'max_age': row['max_age'],
        'interests': _split_interests(row['interests']),
        'tags': list(row['tags'] or []),
        'payment_tx': row['payment_tx'],
        'media_key': row['media_key'],
        'moderation_score': row['moderation_score'],
        'visible': row['visible'],
        'created_at': row['created_at'].isoformat() if row['created_at'] else None,
        'expiry': row['expiry'].isoformat() if row['expiry'] else None,
    }

def _parse_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None

def _escape_like(term: str) -> str:
    return term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')

def build_filter_clause(
    filters: SearchFilters,
    search_term: Optional[str] = None
) -> Tuple[str, List[Any]]:
    """Build the WHERE clause shared by the count and page queries.
    
    Only visible, unexpired ads match. Age filters use range overlap with
    NULL bounds meaning "no restriction"; the geo condition is the bounding
    box pre-filter, exact distances are computed afterwards.
    
    Returns:
        (where_sql, params) with $n placeholders numbered from 1
    """
    conditions = ['visible = true', 'expiry > now()']
    params: List[Any] = []
    param_idx = 1

    if search_term:
        conditions.append(f"(title ILIKE ${param_idx} OR description ILIKE ${param_idx})")
        params.append(f"%{_escape_like(search_term)}%")
        param_idx += 1

    if filters.min_age is not None:
        conditions.append(f"(max_age IS NULL OR max_age >= ${param_idx})")
        params.append(filters.min_age)
        param_idx += 1

    if filters.max_age is not None:
        conditions.append(f"(min_age IS NULL OR min_age <= ${param_idx})")
        params.append(filters.max_age)
        param_idx += 1

    if filters.interests:
        conditions.append(f"string_to_array(lower(interests), ',') && ${param_idx}::text[]")
        params.append([interest.lower() for interest in filters.interests])
        param_idx += 1

    if filters.tags:
        conditions.append(f"tags && ${param_idx}::text[]")
        params.append(list(filters.tags))
        param_idx += 1

    if filters.has_geo:
        min_lat, max_lat, min_lon, max_lon = bounding_box(
            filters.latitude, filters.longitude, filters.radius
        )
        conditions.append(
            f"latitude BETWEEN ${param_idx} AND ${param_idx + 1} "
            f"AND longitude BETWEEN ${param_idx + 2} AND ${param_idx + 3}"
        )
        params.extend([min_lat, max_lat, min_lon, max_lon])
        param_idx += 4

    return ' AND '.join(conditions), params

class AdManager:
    """Manager class for ad persistence and structured queries."""

    def __init__(self, pool=None):
        """Initialize the ad manager.
        
        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_ad(self, ad: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new ad.
        
        Args:
            ad: Ad fields keyed by column name; id, created_at and expiry are required
            
        Returns:
            The stored ad
            
        Raises:
            DuplicatePaymentError: If the payment signature is already attached to an ad
            PersistenceError: On any other storage failure
        """
        await self.ensure_pool()

        interests = ad.get('interests')
        if isinstance(interests, (list, tuple)):
            interests = ','.join(interests) or None

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO ads (
                        id, author, title, description, call_to_action, link_url,
                        latitude, longitude, location, min_age, max_age, interests,
                        tags, payment_tx, media_key, moderation_score, visible,
                        created_at, expiry
                    ) VALUES (
                        $1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                        $11, $12, $13, $14, $15, $16, $17, $18, $19
                    )
                    RETURNING {_SELECT_COLUMNS}
                    ''',
                    _parse_uuid(ad['id']),
                    ad['author'],
                    ad['title'],
                    ad.get('description'),
                    ad.get('call_to_action'),
                    ad.get('link_url'),
                    ad.get('latitude'),
                    ad.get('longitude'),
                    ad.get('location'),
                    ad.get('min_age'),
                    ad.get('max_age'),
                    interests,
                    list(ad.get('tags') or []),
                    ad['payment_tx'],
                    ad.get('media_key'),
                    ad['moderation_score'],
                    ad['visible'],
                    ad['created_at'],
                    ad['expiry']
                )
        except asyncpg.exceptions.UniqueViolationError as e:
            logger.info(f"Payment {ad['payment_tx']} already used: {e}")
            raise DuplicatePaymentError(ad['payment_tx']) from e
        except Exception as e:
            logger.error(f"Error creating ad: {e}")
            raise PersistenceError(f"Failed to create ad: {e}") from e

        logger.info(f"Created ad {row['id']} for payment {ad['payment_tx']}")
        return row_to_ad(row)

    async def get_ad(self, ad_id: Union[str, uuid.UUID], include_hidden: bool = False) -> Dict[str, Any]:
        """Get an ad by id.
        
        Args:
            ad_id: The ad UUID
            include_hidden: Also return hidden or expired ads
            
        Raises:
            AdNotFoundError: If no matching ad exists
        """
        parsed = _parse_uuid(ad_id)
        if parsed is None:
            raise AdNotFoundError(str(ad_id))

        await self.ensure_pool()
        query = f'SELECT {_SELECT_COLUMNS} FROM ads WHERE id = $1'
        if not include_hidden:
            query += ' AND visible = true AND expiry > now()'

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, parsed)
        except Exception as e:
            logger.error(f"Error getting ad {ad_id}: {e}")
            raise PersistenceError(f"Failed to get ad: {e}") from e

        if not row:
            raise AdNotFoundError(str(ad_id))
        return row_to_ad(row)

    async def get_ad_by_payment_tx(self, payment_tx: str) -> Optional[Dict[str, Any]]:
        """Get the ad created by a payment, whatever its visibility."""
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'SELECT {_SELECT_COLUMNS} FROM ads WHERE payment_tx = $1',
                    payment_tx
                )
        except Exception as e:
            logger.error(f"Error looking up payment {payment_tx}: {e}")
            raise PersistenceError(f"Failed to look up payment: {e}") from e
        return row_to_ad(row) if row else None

    async def get_ads_by_ids(self, ad_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Fetch visible, unexpired ads by id.
        
        Returns:
            Dict mapping ad id to ad in the order the ids were given;
            unknown, hidden and expired ids are absent
        """
        ids = [parsed for parsed in (_parse_uuid(ad_id) for ad_id in ad_ids) if parsed]
        if not ids:
            return {}

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f'''
                    SELECT {_SELECT_COLUMNS} FROM ads
                    WHERE id = ANY($1::uuid[]) AND visible = true AND expiry > now()
                    ''',
                    ids
                )
        except Exception as e:
            logger.error(f"Error fetching ads by id: {e}")
            raise PersistenceError(f"Failed to fetch ads: {e}") from e
        found = {row['id']: row_to_ad(row) for row in rows}
        return {str(ad_id): found[ad_id] for ad_id in ids if ad_id in found}

    async def delete_ad(self, ad_id: Union[str, uuid.UUID]) -> bool:
        """Delete an ad and, through cascading keys, its engagement events.
        
        Returns:
            True if a row was deleted
        """
        parsed = _parse_uuid(ad_id)
        if parsed is None:
            return False

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute('DELETE FROM ads WHERE id = $1', parsed)
        except Exception as e:
            logger.error(f"Error deleting ad {ad_id}: {e}")
            raise PersistenceError(f"Failed to delete ad: {e}") from e

        deleted = result.endswith(' 1')
        if deleted:
            logger.info(f"Deleted ad {ad_id}")
        return deleted

    async def query_ads(
        self,
        filters: SearchFilters,
        search_term: Optional[str] = None
    ) -> Dict[str, Any]:
        """Structured search over visible, unexpired ads.
        
        Args:
            filters: Age, interest, tag, geo and pagination filters
            search_term: Optional keyword matched against title and description
            
        Returns:
            Dict containing:
                - ads: The requested page, newest first or nearest first with geo
                - total: Number of ads matching the filters
                - limit, offset: Echo of the pagination parameters
        """
        await self.ensure_pool()
        where, params = build_filter_clause(filters, search_term)

        try:
            async with self.pool.acquire() as conn:
                if filters.has_geo:
                    rows = await conn.fetch(
                        f'SELECT {_SELECT_COLUMNS} FROM ads WHERE {where} ORDER BY created_at DESC',
                        *params
                    )
                    ranked = filter_by_radius(
                        rows,
                        filters.latitude,
                        filters.longitude,
                        filters.radius,
                        coords=lambda row: (row['latitude'], row['longitude'])
                    )
                    total = len(ranked)
                    page = ranked[filters.offset:filters.offset + filters.limit]
                    ads = [
                        dict(row_to_ad(row), distance_km=round(distance, 3))
                        for row, distance in page
                    ]
                else:
                    total = await conn.fetchval(f'SELECT COUNT(*) FROM ads WHERE {where}', *params)
                    param_idx = len(params) + 1
                    rows = await conn.fetch(
                        f'SELECT {_SELECT_COLUMNS} FROM ads WHERE {where} '
                        f'ORDER BY created_at DESC LIMIT ${param_idx} OFFSET ${param_idx + 1}',
                        *params, filters.limit, filters.offset
                    )
                    ads = [row_to_ad(row) for row in rows]
        except Exception as e:
            logger.error(f"Error querying ads: {e}")
            raise PersistenceError(f"Failed to query ads: {e}") from e

        logger.debug(f"Structured query matched {total} ads")
        return {
            'ads': ads,
            'total': total,
            'limit': filters.limit,
            'offset': filters.offset,
        }

    async def cleanup_expired(self) -> List[str]:
        """Delete ads whose expiry has passed.
        
        Returns:
            Ids of the deleted ads
        """
        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch('DELETE FROM ads WHERE expiry < now() RETURNING id')
        except Exception as e:
            logger.error(f"Error cleaning up expired ads: {e}")
            raise PersistenceError(f"Failed to clean up expired ads: {e}") from e

        ids = [str(row['id']) for row in rows]
        if ids:
            logger.info(f"Deleted {len(ids)} expired ads")
        return ids

__all__ = [
    'AdManager',
    'AdServiceError',
    'AdNotFoundError',
    'DuplicatePaymentError',
    'PersistenceError',
    'build_filter_clause',
    'row_to_ad',
    'AD_COLUMNS',
]
