"""Impression and click tracking for ads.

Events are append-only. A requester (user agent + IP) is counted at most
once per ad every 30 minutes for each event type.
"""
import logging
import uuid
from enum import Enum
from typing import Mapping, Optional, Union

from database import get_pool
from ads.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEDUP_WINDOW_MINUTES = 30

class EventSource(str, Enum):
    APP = 'app'
    MCP = 'mcp'

_TABLES = {
    'impression': 'ad_impressions',
    'click': 'ad_clicks',
}

def client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """Best guess at the requester's IP from proxy headers."""
    ip = headers.get('cf-connecting-ip')
    if ip:
        return ip.strip()
    forwarded = headers.get('x-forwarded-for')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    real_ip = headers.get('x-real-ip')
    return real_ip.strip() if real_ip else None

class EngagementTracker:
    """Records deduplicated impressions and clicks."""

    def __init__(self, pool=None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _record(
        self,
        event: str,
        ad_id: Union[str, uuid.UUID],
        source: EventSource,
        user_agent: Optional[str],
        ip_address: Optional[str],
        referrer: Optional[str]
    ) -> bool:
        await self.ensure_pool()
        table = _TABLES[event]
        source = EventSource(source)
        try:
            parsed_id = uuid.UUID(str(ad_id))
        except ValueError:
            logger.debug(f"Ignoring {event} for invalid ad id {ad_id!r}")
            return False

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    f'''
                    INSERT INTO {table} (ad_id, source, user_agent, referrer, ip_address)
                    SELECT $1::uuid, $2::text, $3::text, $4::text, $5::text
                    WHERE EXISTS (SELECT 1 FROM ads WHERE id = $1)
                    AND NOT EXISTS (
                        SELECT 1 FROM {table}
                        WHERE ad_id = $1
                        AND ip_address IS NOT DISTINCT FROM $5
                        AND user_agent IS NOT DISTINCT FROM $3
                        AND created_at > now() - make_interval(mins => $6::int)
                    )
                    ''',
                    parsed_id,
                    source.value,
                    user_agent,
                    referrer,
                    ip_address,
                    DEDUP_WINDOW_MINUTES
                )
        except Exception as e:
            logger.error(f"Error recording {event} for ad {ad_id}: {e}")
            raise PersistenceError(f"Failed to record {event}: {e}") from e

        recorded = result.endswith(' 1')
        if not recorded:
            logger.debug(f"Duplicate {event} for ad {ad_id} within {DEDUP_WINDOW_MINUTES} minutes")
        return recorded

    async def record_impression(
        self,
        ad_id: Union[str, uuid.UUID],
        source: EventSource = EventSource.APP,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        referrer: Optional[str] = None
    ) -> bool:
        """Record that an ad was shown.
        
        Returns:
            True if recorded, False if deduplicated or the ad does not exist
        """
        return await self._record('impression', ad_id, source, user_agent, ip_address, referrer)

    async def record_click(
        self,
        ad_id: Union[str, uuid.UUID],
        source: EventSource = EventSource.APP,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        referrer: Optional[str] = None
    ) -> bool:
        """Record that an ad's link was followed.
        
        Returns:
            True if recorded, False if deduplicated or the ad does not exist
        """
        return await self._record('click', ad_id, source, user_agent, ip_address, referrer)

__all__ = ['EngagementTracker', 'EventSource', 'client_ip', 'DEDUP_WINDOW_MINUTES']
