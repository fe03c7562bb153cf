"""Vector indexing and semantic retrieval of ads.

This module handles:
- Embedding ad text and upserting it with filterable metadata
- Similarity queries with local re-filtering and geo ranking
- Removing ads from the index
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ai import AIError
from ads.geo import filter_by_radius
from ads.models import SearchFilters
from .client import VectorizeClient, VectorIndexError, VectorIndexUnavailable

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = '@cf/baai/bge-small-en-v1.5'
MAX_TOP_K = 50

class IndexingError(Exception):
    """Raised when an ad cannot be written to or removed from the index"""
    pass

@dataclass
class SemanticMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    distance_km: Optional[float] = None

@dataclass
class SemanticSearchResult:
    """Matches that passed every filter, best first.
    
    ``degraded`` is set when the embedding or index call failed, in which
    case matches is empty and callers should fall back to structured search.
    """
    matches: List[SemanticMatch] = field(default_factory=list)
    degraded: bool = False

def extract_embedding(payload: Any) -> List[float]:
    """Find the embedding vector in an embedding model response.
    
    Accepts a flat list, a list of vectors, ``{data: ...}`` and ``{result: ...}``.
    """
    if isinstance(payload, dict):
        for key in ('result', 'data'):
            if key in payload:
                return extract_embedding(payload[key])
        raise VectorIndexError("Embedding response has no data")
    if isinstance(payload, list) and payload:
        if isinstance(payload[0], list):
            return extract_embedding(payload[0])
        if all(isinstance(value, (int, float)) and not isinstance(value, bool) for value in payload):
            return [float(value) for value in payload]
    raise VectorIndexError("Unrecognized embedding response format")

def _join(values: Any) -> Optional[str]:
    if not values:
        return None
    if isinstance(values, str):
        return values
    return ','.join(str(value) for value in values)

def build_ad_text(ad: Dict[str, Any]) -> str:
    """Concatenate the searchable fields of an ad into embedding input."""
    interests = ad.get('interests')
    if isinstance(interests, (list, tuple)):
        interests = ' '.join(interests)
    parts = [
        ad.get('title'),
        ad.get('description'),
        ad.get('location'),
        interests,
        ad.get('call_to_action'),
        ' '.join(ad.get('tags') or []),
    ]
    return ' '.join(part for part in parts if part).strip()

def build_metadata(ad: Dict[str, Any]) -> Dict[str, Any]:
    """Filterable metadata stored next to an ad's vector. Unset fields are omitted."""
    metadata = {
        'ad_id': ad['id'],
        'visible': 1 if ad.get('visible') else 0,
        'expiry': ad.get('expiry'),
        'min_age': ad.get('min_age'),
        'max_age': ad.get('max_age'),
        'latitude': ad.get('latitude'),
        'longitude': ad.get('longitude'),
        'interests': _join(ad.get('interests')),
        'tags': _join(ad.get('tags')),
        'moderation_score': ad.get('moderation_score'),
    }
    return {key: value for key, value in metadata.items() if value is not None}

def _csv_set(value: Any) -> set:
    if not value:
        return set()
    if isinstance(value, str):
        value = value.split(',')
    return {str(item).strip().lower() for item in value if str(item).strip()}

def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def matches_filters(metadata: Dict[str, Any], filters: SearchFilters, now: datetime) -> bool:
    """Re-apply search filters to index metadata.
    
    Missing age bounds never exclude a match.
    """
    if metadata.get('visible') not in (1, True, '1', 'true'):
        return False

    max_age = metadata.get('max_age')
    if filters.min_age is not None and max_age is not None and max_age < filters.min_age:
        return False

    min_age = metadata.get('min_age')
    if filters.max_age is not None and min_age is not None and min_age > filters.max_age:
        return False

    if filters.interests and not (_csv_set(metadata.get('interests')) & _csv_set(filters.interests)):
        return False

    if filters.tags and not (_csv_set(metadata.get('tags')) & _csv_set(filters.tags)):
        return False

    expiry = _parse_time(metadata.get('expiry'))
    if expiry is not None and expiry <= now:
        return False

    return True

class AdIndexer:
    """Keeps the vector index in sync with stored ads and queries it."""

    def __init__(self, ai_client, vector_client, embedding_model: str = DEFAULT_EMBEDDING_MODEL):
        self.ai_client = ai_client
        self.vector_client = vector_client
        self.embedding_model = embedding_model

    async def embed(self, text: str) -> List[float]:
        raw = await asyncio.to_thread(self.ai_client.embed, self.embedding_model, [text])
        return extract_embedding(raw)

    async def index_ad(self, ad: Dict[str, Any]) -> None:
        """Embed an ad and upsert it into the index.
        
        Raises:
            IndexingError: If embedding or upsert fails
        """
        try:
            vector = await self.embed(build_ad_text(ad))
            await asyncio.to_thread(self.vector_client.upsert, [{
                'id': ad['id'],
                'values': vector,
                'metadata': build_metadata(ad),
            }])
        except (AIError, VectorIndexError) as e:
            raise IndexingError(f"Failed to index ad {ad['id']}: {e}") from e
        logger.info(f"Indexed ad {ad['id']}")

    async def delete_ad(self, ad_id: str) -> None:
        """Remove an ad's vector.
        
        Raises:
            IndexingError: If the index rejects or cannot receive the delete
        """
        await self.delete_ads([ad_id])

    async def delete_ads(self, ad_ids: List[str]) -> None:
        if not ad_ids:
            return
        try:
            await asyncio.to_thread(self.vector_client.delete, list(ad_ids))
        except VectorIndexError as e:
            raise IndexingError(f"Failed to delete {len(ad_ids)} vector(s): {e}") from e
        logger.info(f"Removed {len(ad_ids)} ad(s) from the vector index")

    async def semantic_search(
        self,
        query: str,
        filters: SearchFilters,
        top_k: int = MAX_TOP_K
    ) -> SemanticSearchResult:
        """Find ads similar to a query, filtered like a structured search.
        
        With geo filters, matches are ordered by distance instead of similarity.
        Never raises: backend failures produce a degraded, empty result.
        """
        top_k = min(top_k or MAX_TOP_K, MAX_TOP_K)
        try:
            vector = await self.embed(query)
            response = await asyncio.to_thread(
                self.vector_client.query, vector, top_k, {'visible': 1}
            )
            now = datetime.now(timezone.utc)

            matches = []
            for raw in response.get('matches') or []:
                match = SemanticMatch(
                    id=str(raw.get('id')),
                    score=float(raw.get('score') or 0.0),
                    metadata=raw.get('metadata') or {},
                )
                if matches_filters(match.metadata, filters, now):
                    matches.append(match)

            if filters.has_geo:
                ranked = filter_by_radius(
                    matches,
                    filters.latitude,
                    filters.longitude,
                    filters.radius,
                    coords=lambda m: (m.metadata.get('latitude'), m.metadata.get('longitude'))
                )
                matches = []
                for match, distance in ranked:
                    match.distance_km = distance
                    matches.append(match)

        except Exception as e:
            logger.error(f"Semantic search unavailable, returning no matches: {e}")
            return SemanticSearchResult([], degraded=True)

        logger.debug(f"Semantic search for {query!r} kept {len(matches)} matches")
        return SemanticSearchResult(matches)

__all__ = [
    'AdIndexer',
    'IndexingError',
    'SemanticMatch',
    'SemanticSearchResult',
    'VectorizeClient',
    'VectorIndexError',
    'VectorIndexUnavailable',
    'build_ad_text',
    'build_metadata',
    'extract_embedding',
    'matches_filters',
    'DEFAULT_EMBEDDING_MODEL',
    'MAX_TOP_K',
]
