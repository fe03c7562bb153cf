"""Client for Cloudflare Workers AI text generation and embeddings"""
import logging
import requests
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = 'https://api.cloudflare.com/client/v4'

class AIError(Exception):
    """Base exception for AI inference errors"""
    def __init__(self, message: str, code: Optional[int] = None, model: Optional[str] = None):
        self.code = code
        self.model = model
        super().__init__(f"AI Error [{code}] in {model}: {message}" if code else message)

class AIConnectionError(AIError):
    """Raised when the inference endpoint cannot be reached"""
    pass

class AIResponseError(AIError):
    """Raised when the inference endpoint returns an error or an unusable payload"""
    pass

class WorkersAIClient:
    """Workers AI REST client"""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        timeout: float = 30,
        base_url: str = CLOUDFLARE_API_BASE,
        session: Optional[requests.Session] = None
    ):
        self.url = f"{base_url.rstrip('/')}/accounts/{account_id}/ai/run"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['Authorization'] = f"Bearer {api_token}"
        self.session.headers['content-type'] = 'application/json'

    def run(self, model: str, payload: Dict[str, Any]) -> Any:
        """Run a model and return the ``result`` member of the response.
        
        Args:
            model: Model identifier, e.g. ``@cf/meta/llama-3.2-3b-instruct``
            payload: Model input
            
        Returns:
            Model-specific result payload
            
        Raises:
            AIConnectionError: Endpoint unreachable or timed out
            AIResponseError: Endpoint returned an error or malformed JSON
        """
        logger.debug(f"Running model {model}")
        try:
            response = self.session.post(f"{self.url}/{model}", json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise AIConnectionError(f"Request timed out after {self.timeout} seconds", model=model) from e
        except requests.exceptions.RequestException as e:
            raise AIConnectionError(f"Request failed: {str(e)}", model=model) from e

        try:
            body = response.json()
        except ValueError as e:
            raise AIResponseError(
                f"Invalid response format (HTTP {response.status_code})", response.status_code, model
            ) from e
        if not isinstance(body, dict):
            raise AIResponseError(
                f"Invalid response format (HTTP {response.status_code})", response.status_code, model
            )

        if response.status_code >= 400 or not body.get('success', True):
            errors = body.get('errors') or []
            message = '; '.join(str(err.get('message', err)) for err in errors) or response.reason
            raise AIResponseError(message or 'Unknown error', response.status_code, model)

        if 'result' not in body:
            raise AIResponseError("Response missing 'result'", response.status_code, model)
        return body['result']

    def generate(self, model: str, system: str, user: str, max_tokens: int) -> Any:
        """Send a system/user message pair to a text-generation model."""
        return self.run(model, {
            'messages': [
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': user},
            ],
            'max_tokens': max_tokens,
        })

    def embed(self, model: str, texts: List[str]) -> Any:
        """Embed one or more texts with an embedding model."""
        return self.run(model, {'text': texts})

__all__ = [
    'AIError',
    'AIConnectionError',
    'AIResponseError',
    'WorkersAIClient',
]
