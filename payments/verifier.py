"""On-chain verification of USDC payments for ads.

This module handles:
- Fetching parsed transactions with bounded retry (RPC indexing lag)
- Extracting the fee payer of a transaction
- Checking the treasury token account received the expected amount
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import backoff

from rpc import RPCError
from ads.exceptions import (
    PayerExtractionError,
    PayerMismatchError,
    TransactionNotFoundError,
    TransactionFailedError,
    TransactionNotConfirmedError,
    NoTransferFoundError,
    PaymentAmountMismatchError,
)

logger = logging.getLogger(__name__)

# Smallest units the received amount may differ from the price
AMOUNT_TOLERANCE = 1

@dataclass
class VerifiedPayment:
    """A transfer confirmed on chain; only its signature is ever persisted."""
    signature: str
    payer: str
    amount: int
    recipient: str
    valid: bool = True

def account_key_address(key: Any) -> Optional[str]:
    """Return the address of an account key in either string or ``{pubkey}`` form."""
    if isinstance(key, str):
        return key
    if isinstance(key, dict):
        return key.get('pubkey')
    return None

def _account_keys(tx: Dict[str, Any]) -> List[Any]:
    message = (tx.get('transaction') or {}).get('message') or {}
    return message.get('accountKeys') or []

def _raw_amount(balance: Optional[Dict[str, Any]]) -> int:
    if not balance:
        return 0
    amount = (balance.get('uiTokenAmount') or {}).get('amount')
    return int(amount) if amount else 0

def transaction_payer(tx: Dict[str, Any]) -> Optional[str]:
    """The first account key of a transaction is its fee payer."""
    keys = _account_keys(tx)
    if not keys:
        return None
    return account_key_address(keys[0])

def balance_delta(tx: Dict[str, Any], recipient: str, mint: Optional[str] = None) -> Optional[int]:
    """Compute how many smallest units ``recipient`` gained in a transaction.
    
    Args:
        tx: Parsed transaction as returned by getTransaction
        recipient: Token account address to look for
        mint: Only count balances of this mint when given
        
    Returns:
        post - pre for the recipient, or None if the recipient has no post balance
    """
    meta = tx.get('meta') or {}
    keys = _account_keys(tx)
    pre_balances = {
        balance.get('accountIndex'): balance
        for balance in meta.get('preTokenBalances') or []
    }

    for post in meta.get('postTokenBalances') or []:
        index = post.get('accountIndex')
        if not isinstance(index, int) or index >= len(keys):
            continue
        if account_key_address(keys[index]) != recipient:
            continue
        if mint and post.get('mint') and post['mint'] != mint:
            continue
        return _raw_amount(post) - _raw_amount(pre_balances.get(index))

    return None

class PaymentVerifier:
    """Verifies ad payments against the treasury token account."""

    def __init__(
        self,
        rpc,
        treasury_token_account: str,
        mint: Optional[str] = None,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 5.0
    ):
        """Initialize the verifier.
        
        Args:
            rpc: Solana RPC client exposing get_transaction()
            treasury_token_account: Token account that must receive payments
            mint: USDC mint; balances of other mints are ignored when set
            max_attempts: Transaction lookups before giving up
            retry_delay: Delay before the first retry, doubled for each further one
            max_retry_delay: Upper bound for a single delay
        """
        self.rpc = rpc
        self.treasury_token_account = treasury_token_account
        self.mint = mint
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

    async def _fetch_once(self, signature: str) -> Optional[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self.rpc.get_transaction, signature)
        except RPCError as e:
            logger.warning(f"Transaction lookup for {signature} failed: {e}")
            return None

    def _log_retry(self, details: Dict[str, Any]) -> None:
        logger.warning(
            f"Transaction {details['args'][0]} not available yet "
            f"(attempt {details['tries']}/{self.max_attempts}), retrying in {details['wait']:.1f}s"
        )

    async def fetch_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Fetch a transaction, retrying while the node does not return it.
        
        Returns:
            Parsed transaction, or None if every attempt failed
        """
        fetch = backoff.on_predicate(
            backoff.expo,
            lambda tx: tx is None,
            max_tries=self.max_attempts,
            factor=self.retry_delay,
            max_value=self.max_retry_delay,
            jitter=None,
            on_backoff=self._log_retry,
        )(self._fetch_once)
        return await fetch(signature)

    async def extract_payer(self, signature: str) -> Optional[str]:
        """Return the fee payer of a transaction with a single lookup.
        
        Returns:
            Payer address, or None if the transaction is unknown or has no keys
        """
        tx = await self._fetch_once(signature)
        if tx is None:
            return None
        return transaction_payer(tx)

    async def verify(
        self,
        signature: str,
        expected_amount: int,
        recipient_account: Optional[str] = None,
        expected_payer: Optional[str] = None
    ) -> VerifiedPayment:
        """Verify that a transaction paid the expected amount.
        
        Args:
            signature: Transaction signature supplied by the client
            expected_amount: Price in smallest units
            recipient_account: Token account that must be credited; defaults to the treasury
            expected_payer: When given, the transaction's payer must match it
            
        Returns:
            VerifiedPayment for the transaction
            
        Raises:
            TransactionNotFoundError: Transaction not found after all retries
            TransactionFailedError: Transaction executed with an error
            TransactionNotConfirmedError: Transaction has no confirmed slot
            NoTransferFoundError: Recipient was not credited
            PaymentAmountMismatchError: Credited amount is outside tolerance
            PayerExtractionError: Transaction has no account keys
            PayerMismatchError: Payer differs from expected_payer
        """
        recipient = recipient_account or self.treasury_token_account

        tx = await self.fetch_transaction(signature)
        if tx is None:
            raise TransactionNotFoundError("Transaction not found", signature=signature)

        meta = tx.get('meta') or {}
        if meta.get('err') is not None:
            raise TransactionFailedError("Transaction failed", signature=signature)

        if tx.get('slot') is None:
            raise TransactionNotConfirmedError("Transaction not confirmed", signature=signature)

        delta = balance_delta(tx, recipient, self.mint)
        if delta is None or delta <= 0:
            raise NoTransferFoundError(
                f"No token transfer found to recipient account {recipient}",
                signature=signature
            )

        if abs(delta - expected_amount) > AMOUNT_TOLERANCE:
            raise PaymentAmountMismatchError(expected_amount, delta)

        payer = transaction_payer(tx)
        if not payer:
            raise PayerExtractionError("Could not extract payer from transaction", signature=signature)
        if expected_payer and payer != expected_payer:
            raise PayerMismatchError(
                "Payer mismatch: transaction was not signed by the extracted payer",
                signature=signature
            )

        logger.info(f"Verified payment {signature}: {delta} units from {payer}")
        return VerifiedPayment(
            signature=signature,
            payer=payer,
            amount=delta,
            recipient=recipient,
        )
