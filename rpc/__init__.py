"""RPC module for interacting with a Solana JSON-RPC node"""
import threading

import requests
from typing import Any, Dict, Optional

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to node fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when the node rejects our credentials"""
    pass

class SolanaError(RPCError):
    """Solana-specific error codes and messages
    
    Common error codes:
    -32002 - Transaction simulation failed
    -32004 - Block not available for slot
    -32005 - Node is unhealthy / behind
    -32007 - Slot skipped or missing due to ledger jump
    -32009 - Slot skipped or missing in long-term storage
    -32014 - Block status not yet available
    -32016 - Minimum context slot has not been reached
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    """
    # Map of known Solana error codes to human-readable messages
    ERROR_MESSAGES = {
        -32002: "Transaction simulation failed",
        -32004: "Block not available for slot",
        -32005: "Node is unhealthy",
        -32007: "Slot skipped or missing due to ledger jump",
        -32009: "Slot skipped or missing in long-term storage",
        -32014: "Block status not yet available",
        -32016: "Minimum context slot has not been reached",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
    }
    
    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name
    
    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        
        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)
        
        return caller

class SolanaRPC:
    """Solana JSON-RPC client"""
    
    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        """Initialize RPC client.
        
        Args:
            url: JSON-RPC endpoint of the node
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (mostly for tests)
        """
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['content-type'] = 'application/json'
        
        # Request ID counter
        self._request_id = 0
        self._request_id_lock = threading.Lock()
    
    def _get_request_id(self) -> int:
        """Get unique request ID"""
        with self._request_id_lock:
            self._request_id += 1
            return self._request_id
    
    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the Solana node
        
        Args:
            method: RPC method name
            *args: Method arguments
            
        Returns:
            The ``result`` member of the response (may be None)
            
        Raises:
            NodeConnectionError: Connection to node failed or response was malformed
            NodeAuthError: Authentication failed
            SolanaError: Node returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }
        result: Optional[Dict[str, Any]] = None
        
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            
            if response.status_code in (401, 403):
                raise NodeAuthError("Authentication failed - check the RPC URL credentials", method=method)
            
            # Try to parse response even if status code is error
            result = response.json()
            
            if isinstance(result, dict) and result.get('error') is not None:
                error = result['error']
                raise SolanaError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -32603),
                    method
                )
            
            response.raise_for_status()
                
            return result['result']
            
        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to Solana node at {self.url}", method=method
            ) from e
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(
                f"HTTP error occurred: {str(e)}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(
                f"Request failed: {str(e)}", method=method
            ) from e
        except (KeyError, ValueError, TypeError) as e:
            raise NodeConnectionError(
                f"Invalid response format: {str(e)}", method=method
            ) from e
    
    # Define RPC methods as descriptors
    getTransaction = RPCMethod('getTransaction')
    getAccountInfo = RPCMethod('getAccountInfo')
    getSignatureStatuses = RPCMethod('getSignatureStatuses')
    getSlot = RPCMethod('getSlot')
    getHealth = RPCMethod('getHealth')

    def get_transaction(self, signature: str, commitment: str = 'confirmed') -> Optional[Dict[str, Any]]:
        """Fetch a parsed transaction, or None if the node does not know it yet."""
        return self.getTransaction(signature, {
            'encoding': 'jsonParsed',
            'maxSupportedTransactionVersion': 0,
            'commitment': commitment,
        })

    def get_account_info(self, address: str, commitment: str = 'confirmed') -> Optional[Dict[str, Any]]:
        """Fetch parsed account data, or None if the account does not exist."""
        result = self.getAccountInfo(address, {
            'encoding': 'jsonParsed',
            'commitment': commitment,
        })
        if not result:
            return None
        return result.get('value')

    def get_token_balance(self, token_account: str) -> int:
        """Return the raw token amount held by an SPL token account.
        
        Missing accounts report a zero balance.
        """
        account = self.get_account_info(token_account)
        if not account:
            return 0
        try:
            amount = account['data']['parsed']['info']['tokenAmount']['amount']
        except (KeyError, TypeError) as e:
            raise NodeConnectionError(
                f"Account {token_account} is not a parsed token account", method='getAccountInfo'
            ) from e
        return int(amount)

__all__ = [
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'SolanaError',
    'RPCMethod',
    'SolanaRPC',
]
