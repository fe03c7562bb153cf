"""Payment signature idempotency for ad creation."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

@dataclass
class IdempotencyCheck:
    processed: bool
    existing_ad: Optional[Dict[str, Any]] = None

class IdempotencyGuard:
    """Maps a payment signature to the ad it already paid for."""

    def __init__(self, store):
        self.store = store

    async def check_processed(self, payment_tx: str) -> IdempotencyCheck:
        """Look up whether a payment signature has already created an ad.
        
        Only call this after the payment has been verified, so unverified
        signatures cannot be used to look up existing ads.
        """
        existing = await self.store.get_ad_by_payment_tx(payment_tx)
        if existing is None:
            return IdempotencyCheck(processed=False)
        logger.info(f"Payment {payment_tx} already created ad {existing['id']}")
        return IdempotencyCheck(processed=True, existing_ad=existing)
