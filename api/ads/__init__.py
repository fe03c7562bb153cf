"""Ads API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from ads.models import CreateAdRequest, SearchFilters, parse_model
from ads.exceptions import ValidationError
from ads.tags import AVAILABLE_TAGS
from analytics import EventSource, client_ip
from payments import calculate_price, payment_details, to_usdc
from ..dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Ads"]
)

class ImpressionRequest(BaseModel):
    """Optional body of an impression request."""
    source: EventSource = EventSource.APP

def payment_required_response(body: CreateAdRequest, services: Services) -> JSONResponse:
    """HTTP 402 telling the client what to pay and where."""
    settings = services.settings
    amount = calculate_price(body.days, body.has_media)
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content={
            'error': 'payment_required',
            'detail': 'Payment required: send the USDC transfer signature in the X-PAYMENT header',
            'payment': payment_details(
                amount,
                settings['treasury_wallet'],
                settings['usdc_mint'],
                settings['solana_rpc_url'],
            ),
        }
    )

@router.post("/ads", status_code=status.HTTP_201_CREATED)
async def create_ad(
    body: CreateAdRequest,
    response: Response,
    x_payment: Optional[str] = Header(None, alias="X-PAYMENT"),
    services: Services = Depends(get_services)
):
    """Create a paid ad, or answer 402 with payment details when unpaid."""
    payment_tx = (x_payment or '').strip() or body.payment_tx
    if not payment_tx:
        return payment_required_response(body, services)

    result = await services.saga.create(body, payment_tx)
    if result.duplicate:
        response.status_code = status.HTTP_200_OK
        return {'ad': result.ad, 'duplicate': True}
    return {'ad': result.ad, 'duplicate': False, 'indexed': result.indexed}

@router.get("/ads")
async def search_ads(
    query: Optional[str] = Query(None, max_length=500),
    latitude: Optional[float] = Query(None),
    longitude: Optional[float] = Query(None),
    radius: Optional[float] = Query(None),
    min_age: Optional[int] = Query(None),
    max_age: Optional[int] = Query(None),
    interests: Optional[str] = Query(None),
    tags: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    services: Services = Depends(get_services)
):
    """Search ads by free text, structured filters and distance."""
    filters = parse_model(SearchFilters, {
        'query': query,
        'latitude': latitude,
        'longitude': longitude,
        'radius': radius,
        'min_age': min_age,
        'max_age': max_age,
        'interests': interests,
        'tags': tags,
        'limit': limit,
        'offset': offset,
    })
    return await services.search.search(filters.query, filters)

@router.get("/ads/{ad_id}")
async def get_ad(ad_id: str, services: Services = Depends(get_services)):
    """Get a single visible ad."""
    return await services.store.get_ad(ad_id)

@router.post("/ads/{ad_id}/impression")
async def record_impression(
    ad_id: str,
    request: Request,
    body: Optional[ImpressionRequest] = None,
    services: Services = Depends(get_services)
):
    """Record that an ad was displayed."""
    recorded = await services.tracker.record_impression(
        ad_id,
        source=(body.source if body else EventSource.APP),
        user_agent=request.headers.get('user-agent'),
        ip_address=client_ip(request.headers),
        referrer=request.headers.get('referer'),
    )
    return {'recorded': recorded}

@router.get("/ads/{ad_id}/click")
async def click_ad(
    ad_id: str,
    request: Request,
    source: EventSource = Query(EventSource.APP),
    services: Services = Depends(get_services)
):
    """Record a click and redirect to the ad's link."""
    ad = await services.store.get_ad(ad_id)
    if not ad.get('link_url'):
        raise ValidationError(f"Ad {ad_id} has no link")

    try:
        await services.tracker.record_click(
            ad_id,
            source=source,
            user_agent=request.headers.get('user-agent'),
            ip_address=client_ip(request.headers),
            referrer=request.headers.get('referer'),
        )
    except Exception as e:
        # Never block the redirect on analytics
        logger.error(f"Failed to record click for ad {ad_id}: {e}")

    return RedirectResponse(ad['link_url'], status_code=status.HTTP_302_FOUND)

@router.get("/tags")
async def list_tags():
    """List the tags ads can be assigned."""
    return {'tags': list(AVAILABLE_TAGS)}

@router.get("/pricing")
async def get_pricing(
    days: int = Query(1, ge=1, le=365),
    has_media: bool = Query(False)
):
    """Quote the price of an ad."""
    amount = calculate_price(days, has_media)
    return {
        'days': days,
        'has_media': has_media,
        'amount': str(to_usdc(amount)),
        'amount_units': amount,
        'currency': 'USDC',
    }
