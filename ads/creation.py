"""Paid ad creation workflow.

An ad is created in one pass across four independent backends: the payment
is verified on chain, replays are detected, the content is moderated and
tagged, the ad is stored, and finally it is added to the vector index.
Nothing is written until the payment checks out. Indexing is best-effort,
and ads removed after persisting are cleaned up in the background.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

import backoff

from payments.pricing import calculate_price
from vectors import IndexingError
from .exceptions import (
    AdServiceError,
    DuplicatePaymentError,
    PayerExtractionError,
    PaymentError,
    PaymentRequiredError,
    PersistenceError,
)
from .idempotency import IdempotencyGuard
from .models import CreateAdRequest

logger = logging.getLogger(__name__)

class CreationState(str, Enum):
    EXTRACTING = 'extracting'
    PRICING = 'pricing'
    VERIFYING = 'verifying'
    IDEMPOTENCY_CHECK = 'idempotency_check'
    ANALYZING = 'analyzing'
    PERSISTING = 'persisting'
    INDEXING = 'indexing'
    DONE = 'done'
    REJECTED = 'rejected'

@dataclass
class CreationResult:
    ad: Dict[str, Any]
    duplicate: bool = False
    # Stage the run ended in; duplicates report where the payment was found used
    state: CreationState = CreationState.DONE
    indexed: bool = False

class AdCreationSaga:
    """Creates ads from verified payments."""

    def __init__(
        self,
        verifier,
        store,
        analyzer,
        indexer,
        treasury_token_account: Optional[str] = None,
        guard: Optional[IdempotencyGuard] = None,
        revalidate_payments: bool = False,
        compensation_attempts: int = 3,
        compensation_delay: float = 1.0
    ):
        """Initialize the saga.
        
        Args:
            verifier: PaymentVerifier
            store: AdManager or compatible store
            analyzer: ContentAnalyzer
            indexer: AdIndexer
            treasury_token_account: Account that must receive the payment;
                                    defaults to the verifier's treasury
            guard: Idempotency guard; built from the store when omitted
            revalidate_payments: Re-verify the payment after storing the ad
            compensation_attempts: Tries per compensation step
            compensation_delay: Initial delay between compensation tries
        """
        self.verifier = verifier
        self.store = store
        self.analyzer = analyzer
        self.indexer = indexer
        self.treasury_token_account = treasury_token_account
        self.guard = guard or IdempotencyGuard(store)
        self.revalidate_payments = revalidate_payments
        self.compensation_attempts = compensation_attempts
        self.compensation_delay = compensation_delay
        self._background: Set[asyncio.Task] = set()

    @staticmethod
    def _enter(state: CreationState, payment_tx: str) -> CreationState:
        logger.info(f"Ad creation for {payment_tx}: {state.value}")
        return state

    async def create(self, request: CreateAdRequest, payment_tx: Optional[str]) -> CreationResult:
        """Create an ad paid for by ``payment_tx``.
        
        Args:
            request: Validated ad fields
            payment_tx: Signature of the USDC transfer paying for the ad
            
        Returns:
            CreationResult; ``duplicate`` is set when the payment already created an ad
            
        Raises:
            PaymentError: Missing, unverifiable or insufficient payment
            TaggingError: No tags could be generated for publishable content
            PersistenceError: Storage failed
        """
        if not payment_tx:
            raise PaymentRequiredError("Payment signature required")

        state = CreationState.EXTRACTING
        try:
            state = self._enter(CreationState.EXTRACTING, payment_tx)
            payer = await self.verifier.extract_payer(payment_tx)
            if not payer:
                raise PayerExtractionError(
                    "Could not extract payer from payment transaction",
                    signature=payment_tx
                )

            state = self._enter(CreationState.PRICING, payment_tx)
            price = calculate_price(request.days, request.has_media)

            state = self._enter(CreationState.VERIFYING, payment_tx)
            payment = await self.verifier.verify(
                payment_tx, price, self.treasury_token_account, expected_payer=payer
            )

            state = self._enter(CreationState.IDEMPOTENCY_CHECK, payment_tx)
            check = await self.guard.check_processed(payment_tx)
            if check.processed:
                return CreationResult(check.existing_ad, duplicate=True, state=state)

            state = self._enter(CreationState.ANALYZING, payment_tx)
            analysis = await self.analyzer.analyze_with_fallback(request)

            state = self._enter(CreationState.PERSISTING, payment_tx)
            try:
                stored = await self.store.create_ad(
                    build_ad(request, payment.payer, payment_tx, analysis)
                )
            except DuplicatePaymentError:
                # Lost a race with a concurrent request for the same payment
                return await self._existing_result(payment_tx)
        except AdServiceError as e:
            logger.warning(
                f"Ad creation for {payment_tx} rejected while {state.value}: "
                f"{e.category}: {e}"
            )
            raise

        if self.revalidate_payments:
            await self._revalidate(stored, price, payer)

        self._enter(CreationState.INDEXING, payment_tx)
        indexed = await self._index(stored)

        self._enter(CreationState.DONE, payment_tx)
        return CreationResult(stored, indexed=indexed)

    async def _existing_result(self, payment_tx: str) -> CreationResult:
        existing = await self.store.get_ad_by_payment_tx(payment_tx)
        if existing is None:
            raise PersistenceError(
                f"Payment {payment_tx} reported as used but no ad was found"
            )
        logger.info(f"Payment {payment_tx} raced to ad {existing['id']}")
        return CreationResult(existing, duplicate=True, state=CreationState.PERSISTING)

    async def _revalidate(self, ad: Dict[str, Any], price: int, payer: str) -> None:
        try:
            await self.verifier.verify(
                ad['payment_tx'], price, self.treasury_token_account, expected_payer=payer
            )
        except PaymentError as e:
            logger.error(f"Payment {ad['payment_tx']} failed re-validation, rolling back ad {ad['id']}: {e}")
            self.schedule_compensation(ad['id'])
            raise

    async def _index(self, ad: Dict[str, Any]) -> bool:
        try:
            await self.indexer.index_ad(ad)
            return True
        except IndexingError as e:
            logger.error(f"Ad {ad['id']} stored but not indexed: {e}")
            return False
        except Exception as e:
            # The ad is stored and paid for; indexing never fails the request
            logger.exception(f"Unexpected error indexing ad {ad['id']}: {e}")
            return False

    async def compensate(self, ad_id: str) -> None:
        """Remove an ad from the store and the vector index.
        
        Both steps run independently with their own retries. Failures are
        logged, never raised.
        """
        def retrying(step, errors):
            return backoff.on_exception(
                backoff.expo,
                errors,
                max_tries=self.compensation_attempts,
                factor=self.compensation_delay,
                jitter=None,
            )(step)

        store_result, index_result = await asyncio.gather(
            retrying(self.store.delete_ad, PersistenceError)(ad_id),
            retrying(self.indexer.delete_ad, IndexingError)(ad_id),
            return_exceptions=True
        )

        for step, result in (('store', store_result), ('vector index', index_result)):
            if isinstance(result, BaseException):
                logger.error(f"Rollback of ad {ad_id} from {step} failed: {result}")
            else:
                logger.info(f"Rolled back ad {ad_id} from {step}")

    def schedule_compensation(self, ad_id: str) -> asyncio.Task:
        """Run compensate() in the background without blocking the caller."""
        task = asyncio.create_task(self.compensate(ad_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending background compensation to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

def build_ad(request: CreateAdRequest, author: str, payment_tx: str, analysis) -> Dict[str, Any]:
    """Assemble the ad row from the request, the verified payer and the analysis."""
    created_at = datetime.now(timezone.utc)
    return {
        'id': str(uuid.uuid4()),
        'author': author,
        'title': request.title,
        'description': request.description,
        'call_to_action': request.call_to_action,
        'link_url': request.link_url,
        'latitude': request.latitude,
        'longitude': request.longitude,
        'location': request.location,
        'min_age': request.min_age,
        'max_age': request.max_age,
        'interests': list(request.interests),
        'tags': [] if analysis.score == 0 else list(analysis.tags),
        'payment_tx': payment_tx,
        'media_key': request.media_key,
        'moderation_score': analysis.score,
        'visible': analysis.visible,
        'created_at': created_at,
        'expiry': created_at + timedelta(days=request.days),
    }
