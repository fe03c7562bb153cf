"""Service wiring for the API.

Every collaborator is built explicitly from settings and handed to routes
through FastAPI dependencies; nothing is a module-level singleton.
"""
from dataclasses import dataclass
from typing import Any, Dict

from fastapi import Request

from ai import WorkersAIClient
from ads import AdManager
from ads.analysis import ContentAnalyzer
from ads.creation import AdCreationSaga
from ads.search import HybridSearch
from analytics import EngagementTracker
from payments import PaymentVerifier
from rpc import SolanaRPC
from vectors import AdIndexer, VectorizeClient

@dataclass
class Services:
    settings: Dict[str, Any]
    store: Any
    indexer: Any
    saga: Any
    search: Any
    tracker: Any

def build_services(settings: Dict[str, Any], pool=None) -> Services:
    """Construct the service graph from validated settings."""
    rpc = SolanaRPC(settings['solana_rpc_url'], timeout=settings['rpc_timeout'])
    ai_client = WorkersAIClient(settings['cloudflare_account_id'], settings['cloudflare_api_token'])
    vector_client = VectorizeClient(
        settings['cloudflare_account_id'],
        settings['cloudflare_api_token'],
        settings['vectorize_index'],
    )

    store = AdManager(pool)
    indexer = AdIndexer(ai_client, vector_client, settings['embedding_model'])
    verifier = PaymentVerifier(
        rpc,
        settings['treasury_token_account'],
        mint=settings['usdc_mint'],
        max_attempts=settings['payment_max_attempts'],
        retry_delay=settings['payment_retry_delay'],
        max_retry_delay=settings['payment_max_retry_delay'],
    )
    analyzer = ContentAnalyzer(
        ai_client,
        model=settings['text_model'],
        analysis_max_tokens=settings['analysis_max_tokens'],
        moderation_max_tokens=settings['moderation_max_tokens'],
        tag_max_tokens=settings['tag_max_tokens'],
    )
    saga = AdCreationSaga(
        verifier,
        store,
        analyzer,
        indexer,
        treasury_token_account=settings['treasury_token_account'],
        revalidate_payments=settings['revalidate_payments'],
    )

    return Services(
        settings=settings,
        store=store,
        indexer=indexer,
        saga=saga,
        search=HybridSearch(store, indexer),
        tracker=EngagementTracker(pool),
    )

def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services built at startup."""
    return request.app.state.services
