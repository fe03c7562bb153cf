"""JSON-RPC endpoint exposing ad tools to conversational agents.

A fresh McpHandler is built for every request from the injected services,
so no protocol state survives between calls.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from ads.exceptions import AdServiceError, PaymentRequiredError, ValidationError
from ads.models import CreateAdRequest, SearchFilters, parse_model
from ads.tags import AVAILABLE_TAGS
from analytics import EventSource, client_ip
from payments import calculate_price, payment_details
from ..dependencies import Services, get_services

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = '2024-11-05'
SERVER_INFO = {'name': 'threead', 'version': '1.0.0'}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

router = APIRouter(
    tags=["MCP"]
)

class JsonRpcError(Exception):
    """Protocol-level error returned in the JSON-RPC error member"""
    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)

def _post_schema() -> Dict[str, Any]:
    schema = CreateAdRequest.model_json_schema()
    schema['properties']['payment_tx']['description'] = (
        'Signature of the USDC transfer paying for the ad; omit it to get a price quote'
    )
    return schema

TOOLS = [
    {
        'name': 'postAd',
        'description': 'Publish a paid ad. Without payment_tx, returns the amount and recipient to pay.',
        'inputSchema': _post_schema(),
    },
    {
        'name': 'queryAds',
        'description': 'Search ads by meaning, age, interests, tags and distance.',
        'inputSchema': SearchFilters.model_json_schema(),
    },
    {
        'name': 'getAdDetails',
        'description': 'Get a single ad by id.',
        'inputSchema': {
            'type': 'object',
            'properties': {'ad_id': {'type': 'string'}},
            'required': ['ad_id'],
        },
    },
    {
        'name': 'getAvailableTags',
        'description': 'List the tags ads can be assigned.',
        'inputSchema': {'type': 'object', 'properties': {}},
    },
]

class McpHandler:
    """Dispatches JSON-RPC calls for a single HTTP request."""

    def __init__(self, services: Services, user_agent: Optional[str] = None,
                 ip_address: Optional[str] = None):
        self.services = services
        self.user_agent = user_agent
        self.ip_address = ip_address

    async def handle(self, message: Any) -> Optional[Dict[str, Any]]:
        """Handle one JSON-RPC message; notifications return None."""
        if not isinstance(message, dict) or message.get('jsonrpc') != '2.0' or 'method' not in message:
            return self._error(None, JsonRpcError(INVALID_REQUEST, "Invalid Request"))

        request_id = message.get('id')
        is_notification = 'id' not in message
        try:
            result = await self.dispatch(message['method'], message.get('params') or {})
        except JsonRpcError as e:
            return None if is_notification else self._error(request_id, e)
        except Exception as e:
            logger.error(f"MCP method {message['method']} failed: {e}")
            return None if is_notification else self._error(
                request_id, JsonRpcError(INTERNAL_ERROR, "Internal error")
            )

        if is_notification:
            return None
        return {'jsonrpc': '2.0', 'id': request_id, 'result': result}

    @staticmethod
    def _error(request_id: Any, error: JsonRpcError) -> Dict[str, Any]:
        body: Dict[str, Any] = {'code': error.code, 'message': str(error)}
        if error.data is not None:
            body['data'] = error.data
        return {'jsonrpc': '2.0', 'id': request_id, 'error': body}

    async def dispatch(self, method: str, params: Dict[str, Any]) -> Any:
        if method == 'initialize':
            return {
                'protocolVersion': PROTOCOL_VERSION,
                'serverInfo': SERVER_INFO,
                'capabilities': {'tools': {}},
            }
        if method == 'ping':
            return {}
        if method.startswith('notifications/'):
            return {}
        if method == 'tools/list':
            return {'tools': TOOLS}
        if method == 'tools/call':
            return await self.call_tool(params.get('name'), params.get('arguments') or {})
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def call_tool(self, name: Optional[str], arguments: Dict[str, Any]) -> Dict[str, Any]:
        tools = {
            'postAd': self.post_ad,
            'queryAds': self.query_ads,
            'getAdDetails': self.get_ad_details,
            'getAvailableTags': self.get_available_tags,
        }
        if name not in tools:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Tool arguments must be an object")

        try:
            payload = await tools[name](arguments)
        except AdServiceError as e:
            return self._tool_result(e.to_dict(), is_error=True)
        return self._tool_result(payload)

    @staticmethod
    def _tool_result(payload: Any, is_error: bool = False) -> Dict[str, Any]:
        return {
            'content': [{'type': 'text', 'text': json.dumps(payload, default=str)}],
            'isError': is_error,
        }

    async def post_ad(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        request = parse_model(CreateAdRequest, arguments)
        if not request.payment_tx:
            settings = self.services.settings
            raise PaymentRequiredError(
                "Payment required: call postAd again with payment_tx",
                payment=payment_details(
                    calculate_price(request.days, request.has_media),
                    settings['treasury_wallet'],
                    settings['usdc_mint'],
                    settings['solana_rpc_url'],
                )
            )
        result = await self.services.saga.create(request, request.payment_tx)
        return {'ad': result.ad, 'duplicate': result.duplicate}

    async def query_ads(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        try:
            filters = parse_model(SearchFilters, arguments)
        except ValidationError as e:
            raise JsonRpcError(INVALID_PARAMS, str(e), data=e.to_dict()) from e
        result = await self.services.search.search(filters.query, filters)
        await self._record_impressions(result['ads'])
        return result

    async def get_ad_details(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ad = await self.services.store.get_ad(str(arguments.get('ad_id') or ''))
        await self._record_impressions([ad])
        return {'ad': ad}

    async def get_available_tags(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {'tags': list(AVAILABLE_TAGS)}

    async def _record_impressions(self, ads: List[Dict[str, Any]]) -> None:
        for ad in ads:
            try:
                await self.services.tracker.record_impression(
                    ad['id'],
                    source=EventSource.MCP,
                    user_agent=self.user_agent,
                    ip_address=self.ip_address,
                )
            except AdServiceError as e:
                logger.warning(f"Failed to record MCP impression for ad {ad['id']}: {e}")

@router.post("/mcp")
async def mcp_endpoint(request: Request, services: Services = Depends(get_services)):
    """JSON-RPC 2.0 entry point; accepts single messages and batches."""
    try:
        message = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        return JSONResponse({
            'jsonrpc': '2.0',
            'id': None,
            'error': {'code': PARSE_ERROR, 'message': 'Parse error'},
        })

    handler = McpHandler(
        services,
        user_agent=request.headers.get('user-agent'),
        ip_address=client_ip(request.headers),
    )

    if isinstance(message, list):
        if not message:
            return JSONResponse(handler._error(None, JsonRpcError(INVALID_REQUEST, "Invalid Request")))
        responses = [reply for reply in [await handler.handle(item) for item in message] if reply]
        if not responses:
            return Response(status_code=status.HTTP_202_ACCEPTED)
        return JSONResponse(responses)

    reply = await handler.handle(message)
    if reply is None:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    return JSONResponse(reply)
