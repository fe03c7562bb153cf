""" Search ads by meaning, filters and distance """
import logging
from typing import Any, Dict, Optional

from .models import SearchFilters

logger = logging.getLogger(__name__)

class HybridSearch:
    """Blends semantic matches from the vector index with stored ads."""

    def __init__(self, store, indexer):
        self.store = store
        self.indexer = indexer

    async def search(self, query: Optional[str], filters: SearchFilters) -> Dict[str, Any]:
        """Search visible, unexpired ads.
        
        Args:
            query: Optional free text; without it the search is purely structured
            filters: Age, interest, tag, geo and pagination filters
            
        Returns:
            Dict containing:
                - ads: The requested page
                - total: Number of matching ads
                - limit, offset: Echo of the pagination parameters
                - mode: 'structured', 'semantic', or 'keyword' when the vector
                  index was unavailable and the query fell back to text matching
        """
        query = (query or '').strip()
        if not query:
            result = await self.store.query_ads(filters)
            result['mode'] = 'structured'
            return result

        semantic = await self.indexer.semantic_search(query, filters)
        if semantic.degraded:
            logger.warning(f"Vector search unavailable, falling back to keyword search for {query!r}")
            result = await self.store.query_ads(filters, search_term=query)
            result['mode'] = 'keyword'
            return result

        # The store is the source of truth; stale vectors simply drop out
        ads_by_id = await self.store.get_ads_by_ids([match.id for match in semantic.matches])
        ranked = []
        for match in semantic.matches:
            ad = ads_by_id.get(match.id)
            if ad is None:
                continue
            ad = dict(ad, relevance=round(match.score, 4))
            if match.distance_km is not None:
                ad['distance_km'] = round(match.distance_km, 3)
            ranked.append(ad)

        return {
            'ads': ranked[filters.offset:filters.offset + filters.limit],
            'total': len(ranked),
            'limit': filters.limit,
            'offset': filters.offset,
            'mode': 'semantic',
        }
