"""Tests for geo helpers, the vector indexer and hybrid search."""

from datetime import datetime, timedelta, timezone

import pytest

from ads.geo import bounding_box, filter_by_radius, haversine_km
from ads.models import SearchFilters
from vectors import AdIndexer, build_ad_text, build_metadata, extract_embedding, matches_filters
from tests.conftest import (
    FakeAIClient,
    FakeVectorClient,
    InMemoryAdStore,
    build_test_services,
    make_ad,
)

# Points roughly 1 km apart along a meridian
ORIGIN = (51.5, -0.12)

def test_haversine():
    """Test distances against known values."""
    assert haversine_km(*ORIGIN, *ORIGIN) == 0
    # One degree of latitude is about 111.2 km
    assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)
    # London to Paris
    assert haversine_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=2)

def test_bounding_box():
    """Test the pre-filter box covers the radius and stays in range."""
    min_lat, max_lat, min_lon, max_lon = bounding_box(0, 0, 111)
    assert (min_lat, max_lat) == pytest.approx((-1, 1))
    assert (min_lon, max_lon) == pytest.approx((-1, 1))

    assert bounding_box(89.9, 10, 500)[1] == 90.0
    assert bounding_box(90, 10, 1)[2:] == (-180.0, 180.0)

def test_filter_by_radius_is_inclusive():
    """Test items exactly on the radius are kept and sorted by distance."""
    near = {'name': 'near', 'lat': 51.501, 'lon': -0.12}
    far = {'name': 'far', 'lat': 52.5, 'lon': -0.12}
    nowhere = {'name': 'nowhere', 'lat': None, 'lon': None}
    edge = haversine_km(*ORIGIN, far['lat'], far['lon'])

    ranked = filter_by_radius(
        [far, nowhere, near], *ORIGIN, edge, coords=lambda item: (item['lat'], item['lon'])
    )
    assert [item['name'] for item, _ in ranked] == ['near', 'far']
    assert ranked[1][1] == edge

    ranked = filter_by_radius(
        [far, near], *ORIGIN, edge - 0.001, coords=lambda item: (item['lat'], item['lon'])
    )
    assert [item['name'] for item, _ in ranked] == ['near']

def test_metadata_and_text():
    """Test index metadata omits unset fields."""
    ad = make_ad(interests=['cycling', 'outdoors'], min_age=18)
    metadata = build_metadata(ad)
    assert metadata['visible'] == 1
    assert metadata['interests'] == 'cycling,outdoors'
    assert metadata['tags'] == 'product,sports'
    assert metadata['min_age'] == 18
    assert 'max_age' not in metadata
    assert 'latitude' not in metadata

    text = build_ad_text(ad)
    assert 'Vintage road bike' in text
    assert 'cycling outdoors' in text

def test_extract_embedding_shapes():
    """Test embedding vectors are found in each response shape."""
    assert extract_embedding({'shape': [1, 2], 'data': [[0.5, 1]]}) == [0.5, 1.0]
    assert extract_embedding({'result': {'data': [[1, 2]]}}) == [1.0, 2.0]
    assert extract_embedding([0.25, 0.75]) == [0.25, 0.75]

def test_matches_filters_age_overlap():
    """Test age filters use range overlap with open bounds."""
    now = datetime.now(timezone.utc)
    adults = build_metadata(make_ad(min_age=18, max_age=35))
    open_ad = build_metadata(make_ad())

    assert matches_filters(adults, SearchFilters(min_age=30), now)
    assert not matches_filters(adults, SearchFilters(min_age=40), now)
    assert not matches_filters(adults, SearchFilters(max_age=16), now)
    assert matches_filters(open_ad, SearchFilters(min_age=40, max_age=50), now)
    assert matches_filters(open_ad, SearchFilters(tags='SPORTS'), now)
    assert not matches_filters(open_ad, SearchFilters(interests='knitting'), now)

    expired = build_metadata(make_ad(expiry=(now - timedelta(minutes=1)).isoformat()))
    assert not matches_filters(expired, SearchFilters(), now)

async def seed(store, ai_client, vector_client, *ads):
    indexer = AdIndexer(ai_client, vector_client)
    for ad in ads:
        store.ads[ad['id']] = ad
        await indexer.index_ad(ad)
    return indexer

@pytest.mark.asyncio
async def test_semantic_search_orders_by_relevance():
    """Test semantic results follow similarity and carry relevance."""
    store, ai_client = InMemoryAdStore(), FakeAIClient()
    bike, lamp = make_ad(), make_ad(title='Desk lamp', tags=['furniture', 'product'])
    vectors = FakeVectorClient(scores={bike['id']: 0.91, lamp['id']: 0.42})
    await seed(store, ai_client, vectors, bike, lamp)

    services = build_test_services(ai_client=ai_client, vector_client=vectors, store=store)
    result = await services.search.search('bicycle', SearchFilters())

    assert result['mode'] == 'semantic'
    assert [ad['id'] for ad in result['ads']] == [bike['id'], lamp['id']]
    assert result['ads'][0]['relevance'] == 0.91
    assert result['total'] == 2
    assert vectors.queries[0] == {'top_k': 50, 'filter': {'visible': 1}}

@pytest.mark.asyncio
async def test_semantic_search_skips_hidden_and_stale():
    """Test hidden ads and vectors without a stored ad are dropped."""
    store, ai_client, vectors = InMemoryAdStore(), FakeAIClient(), FakeVectorClient()
    visible, hidden, deleted = make_ad(), make_ad(visible=False, moderation_score=2), make_ad()
    await seed(store, ai_client, vectors, visible, hidden, deleted)
    del store.ads[deleted['id']]

    services = build_test_services(ai_client=ai_client, vector_client=vectors, store=store)
    result = await services.search.search('bike', SearchFilters())
    assert [ad['id'] for ad in result['ads']] == [visible['id']]

@pytest.mark.asyncio
async def test_semantic_geo_search_sorts_by_distance():
    """Test geo filtering keeps in-radius ads nearest first."""
    store, ai_client = InMemoryAdStore(), FakeAIClient()
    close_by = make_ad(latitude=51.505, longitude=-0.12)
    further = make_ad(latitude=51.55, longitude=-0.12)
    abroad = make_ad(latitude=48.85, longitude=2.35)
    vectors = FakeVectorClient(scores={close_by['id']: 0.1, further['id']: 0.9, abroad['id']: 0.99})
    await seed(store, ai_client, vectors, close_by, further, abroad)

    services = build_test_services(ai_client=ai_client, vector_client=vectors, store=store)
    filters = SearchFilters(latitude=ORIGIN[0], longitude=ORIGIN[1], radius=10)
    result = await services.search.search('bike', filters)

    assert [ad['id'] for ad in result['ads']] == [close_by['id'], further['id']]
    assert result['ads'][0]['distance_km'] < result['ads'][1]['distance_km'] <= 10

@pytest.mark.asyncio
async def test_degraded_index_falls_back_to_keywords():
    """Test an unavailable index switches to keyword search."""
    store = InMemoryAdStore()
    bike, lamp = make_ad(), make_ad(title='Desk lamp', description='Brass')
    store.ads.update({bike['id']: bike, lamp['id']: lamp})

    services = build_test_services(vector_client=FakeVectorClient(available=False), store=store)
    result = await services.search.search('road', SearchFilters())

    assert result['mode'] == 'keyword'
    assert [ad['id'] for ad in result['ads']] == [bike['id']]

@pytest.mark.asyncio
async def test_structured_search_without_query():
    """Test an empty query uses structured search with pagination."""
    store = InMemoryAdStore()
    for index in range(5):
        ad = make_ad(title=f'Ad {index}')
        store.ads[ad['id']] = ad

    vectors = FakeVectorClient()
    services = build_test_services(vector_client=vectors, store=store)
    result = await services.search.search('   ', SearchFilters(limit=2, offset=1))

    assert result['mode'] == 'structured'
    assert result['total'] == 5
    assert len(result['ads']) == 2
    assert vectors.queries == []

@pytest.mark.asyncio
async def test_embedding_failure_degrades():
    """Test embedding errors never raise from semantic search."""
    from ai import AIConnectionError

    indexer = AdIndexer(FakeAIClient(embedding=AIConnectionError("down")), FakeVectorClient())
    result = await indexer.semantic_search('anything', SearchFilters())
    assert result.degraded
    assert result.matches == []
