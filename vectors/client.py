"""Client for the Cloudflare Vectorize v2 REST API"""
import json
import logging
import requests
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = 'https://api.cloudflare.com/client/v4'

class VectorIndexError(Exception):
    """Base exception for vector index errors"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(f"Vector index error [{status_code}]: {message}" if status_code else message)

class VectorIndexUnavailable(VectorIndexError):
    """Raised when the vector index cannot be reached or is failing server-side"""
    pass

class VectorizeClient:
    """Vectorize index client"""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        index_name: str,
        timeout: float = 10,
        base_url: str = CLOUDFLARE_API_BASE,
        session: Optional[requests.Session] = None
    ):
        self.index_name = index_name
        self.url = f"{base_url.rstrip('/')}/accounts/{account_id}/vectorize/v2/indexes/{index_name}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['Authorization'] = f"Bearer {api_token}"

    def _request(self, path: str, *, json_body: Any = None, data: Optional[str] = None,
                 content_type: str = 'application/json') -> Any:
        """POST to an index endpoint and return the ``result`` member.
        
        Raises:
            VectorIndexUnavailable: Timeout, connection failure or 5xx
            VectorIndexError: Any other unsuccessful response
        """
        try:
            response = self.session.post(
                f"{self.url}/{path}",
                json=json_body,
                data=data,
                headers={'content-type': content_type},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise VectorIndexUnavailable(f"{path} timed out after {self.timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            raise VectorIndexUnavailable(f"{path} failed: {e}") from e

        if response.status_code >= 500:
            raise VectorIndexUnavailable(f"{path} unavailable", response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise VectorIndexError(f"Invalid response format from {path}", response.status_code) from e
        if not isinstance(body, dict):
            raise VectorIndexError(f"Invalid response format from {path}", response.status_code)

        if response.status_code >= 400 or not body.get('success', True):
            errors = body.get('errors') or []
            message = '; '.join(str(err.get('message', err)) for err in errors) or f"{path} failed"
            raise VectorIndexError(message, response.status_code)

        return body.get('result') or {}

    def upsert(self, vectors: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Insert or replace vectors given as ``{id, values, metadata}`` dicts."""
        ndjson = '\n'.join(json.dumps(vector) for vector in vectors)
        return self._request('upsert', data=ndjson, content_type='application/x-ndjson')

    def query(self, vector: List[float], top_k: int,
              metadata_filter: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Similarity query returning matches with their metadata."""
        body: Dict[str, Any] = {
            'vector': vector,
            'topK': top_k,
            'returnValues': False,
            'returnMetadata': 'all',
        }
        if metadata_filter:
            body['filter'] = metadata_filter
        return self._request('query', json_body=body)

    def delete(self, ids: List[str]) -> Dict[str, Any]:
        """Delete vectors by id."""
        return self._request('delete_by_ids', json_body={'ids': ids})
