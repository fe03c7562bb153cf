"""Tests for the PostgreSQL ad store query building and row mapping."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from ads import AdManager, build_filter_clause, row_to_ad
from ads.geo import haversine_km
from ads.exceptions import AdNotFoundError, DuplicatePaymentError, PersistenceError
from ads.models import SearchFilters
from database.lib.schema_manager import build_constraints, build_create_table
from database.schema.v1 import schema
from tests.conftest import make_ad

def test_filter_clause_defaults():
    """Test only visible, unexpired ads are ever selected."""
    where, params = build_filter_clause(SearchFilters())
    assert where == 'visible = true AND expiry > now()'
    assert params == []

def test_filter_clause_all_filters():
    """Test placeholders are numbered in order."""
    filters = SearchFilters(
        min_age=18, max_age=30, interests='Cycling,Music', tags='sports',
        latitude=0, longitude=0, radius=111
    )
    where, params = build_filter_clause(filters, search_term='50%_off')

    assert '(title ILIKE $1 OR description ILIKE $1)' in where
    assert '(max_age IS NULL OR max_age >= $2)' in where
    assert '(min_age IS NULL OR min_age <= $3)' in where
    assert "string_to_array(lower(interests), ',') && $4::text[]" in where
    assert 'tags && $5::text[]' in where
    assert 'latitude BETWEEN $6 AND $7 AND longitude BETWEEN $8 AND $9' in where

    assert params[0] == '%50\\%\\_off%'
    assert params[1:5] == [18, 30, ['cycling', 'music'], ['sports']]
    assert params[5:] == pytest.approx([-1, 1, -1, 1])

def test_row_to_ad():
    """Test database rows become JSON-friendly dicts."""
    ad_id = uuid.uuid4()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    row = dict(make_ad(), id=ad_id, interests='cycling,outdoors', tags=('product',),
               created_at=now, expiry=now)
    ad = row_to_ad(row)
    assert ad['id'] == str(ad_id)
    assert ad['interests'] == ['cycling', 'outdoors']
    assert ad['tags'] == ['product']
    assert ad['created_at'] == '2026-01-01T00:00:00+00:00'

def test_schema_sql():
    """Test the schema renders with its checks and indexes."""
    ads_table = next(table for table in schema['tables'] if table['name'] == 'ads')
    create_sql = build_create_table(ads_table)
    assert create_sql.startswith('CREATE TABLE IF NOT EXISTS ads')
    assert 'payment_tx' in create_sql
    assert 'moderation_score' in create_sql

    constraints = '\n'.join(build_constraints(ads_table))
    assert 'UNIQUE INDEX IF NOT EXISTS idx_ads_payment_tx' in constraints
    # Same expression as the interests filter so the planner can use it
    assert (
        "idx_ads_interests ON ads USING GIN ((string_to_array(lower(interests), ',')))"
        in constraints
    )

def mock_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    return pool

@pytest.mark.asyncio
async def test_create_ad_duplicate_payment():
    """Test a unique violation maps to DuplicatePaymentError."""
    conn = MagicMock()
    conn.fetchrow = AsyncMock(side_effect=asyncpg.exceptions.UniqueViolationError('duplicate key'))
    manager = AdManager(mock_pool(conn))

    ad = make_ad()
    ad.update(created_at=datetime.now(timezone.utc), expiry=datetime.now(timezone.utc))
    with pytest.raises(DuplicatePaymentError):
        await manager.create_ad(ad)

@pytest.mark.asyncio
async def test_create_ad_other_failure():
    """Test other database errors map to PersistenceError."""
    conn = MagicMock()
    conn.fetchrow = AsyncMock(side_effect=OSError('connection lost'))
    manager = AdManager(mock_pool(conn))

    ad = make_ad()
    ad.update(created_at=datetime.now(timezone.utc), expiry=datetime.now(timezone.utc))
    with pytest.raises(PersistenceError):
        await manager.create_ad(ad)

@pytest.mark.asyncio
async def test_get_ad_not_found():
    """Test unknown and malformed ids raise AdNotFoundError."""
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value=None)
    manager = AdManager(mock_pool(conn))

    with pytest.raises(AdNotFoundError):
        await manager.get_ad(str(uuid.uuid4()))
    with pytest.raises(AdNotFoundError) as exc_info:
        await manager.get_ad('not-a-uuid')
    assert exc_info.value.status_code == 404

def ad_row(**overrides):
    now = datetime.now(timezone.utc)
    row = dict(make_ad(), id=uuid.uuid4(), interests='cycling', tags=('product',),
               created_at=now, expiry=now)
    row.update(overrides)
    return row

@pytest.mark.asyncio
async def test_query_ads_paginates_in_sql():
    """Test LIMIT and OFFSET follow the filter placeholders and total is a COUNT."""
    conn = MagicMock()
    conn.fetchval = AsyncMock(return_value=42)
    conn.fetch = AsyncMock(return_value=[ad_row()])
    manager = AdManager(mock_pool(conn))

    filters = SearchFilters(tags='sports', limit=10, offset=20)
    result = await manager.query_ads(filters, search_term='bike')

    count_sql, *count_args = conn.fetchval.call_args.args
    assert count_sql.startswith('SELECT COUNT(*) FROM ads WHERE visible = true')
    assert count_args == ['%bike%', ['sports']]

    page_sql, *page_args = conn.fetch.call_args.args
    assert page_sql.endswith('ORDER BY created_at DESC LIMIT $3 OFFSET $4')
    assert page_args == ['%bike%', ['sports'], 10, 20]

    assert result['total'] == 42
    assert len(result['ads']) == 1
    assert (result['limit'], result['offset']) == (10, 20)

@pytest.mark.asyncio
async def test_query_ads_geo_radius():
    """Test the radius is inclusive and total counts every ad inside it."""
    radius = haversine_km(0, 0, 0, 1)
    center = ad_row(title='center', latitude=0.0, longitude=0.0)
    edge = ad_row(title='edge', latitude=0.0, longitude=1.0)
    outside = ad_row(title='outside', latitude=0.0, longitude=1.5)
    nowhere = ad_row(title='nowhere', latitude=None, longitude=None)

    conn = MagicMock()
    conn.fetchval = AsyncMock()
    conn.fetch = AsyncMock(return_value=[outside, edge, nowhere, center])
    manager = AdManager(mock_pool(conn))

    filters = SearchFilters(latitude=0, longitude=0, radius=radius, limit=1, offset=1)
    result = await manager.query_ads(filters)

    sql, *args = conn.fetch.call_args.args
    assert 'LIMIT' not in sql
    assert 'latitude BETWEEN $1 AND $2 AND longitude BETWEEN $3 AND $4' in sql
    assert len(args) == 4
    conn.fetchval.assert_not_called()

    assert result['total'] == 2
    assert [ad['title'] for ad in result['ads']] == ['edge']
    assert result['ads'][0]['distance_km'] == round(radius, 3)

@pytest.mark.asyncio
async def test_get_ads_by_ids_keeps_input_order():
    """Test ads come back in the order they were asked for."""
    first, second, third = ad_row(), ad_row(), ad_row()
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[third, first])
    manager = AdManager(mock_pool(conn))

    requested = [str(first['id']), 'not-a-uuid', str(second['id']), str(third['id'])]
    ads = await manager.get_ads_by_ids(requested)

    assert list(ads) == [str(first['id']), str(third['id'])]
    sql, ids = conn.fetch.call_args.args
    assert 'id = ANY($1::uuid[])' in sql
    assert ids == [first['id'], second['id'], third['id']]

@pytest.mark.asyncio
async def test_get_ads_by_ids_skips_query_without_valid_ids():
    """Test malformed ids never reach the database."""
    conn = MagicMock()
    conn.fetch = AsyncMock()
    manager = AdManager(mock_pool(conn))

    assert await manager.get_ads_by_ids(['nope']) == {}
    conn.fetch.assert_not_called()

@pytest.mark.asyncio
async def test_cleanup_expired():
    """Test expired ads are deleted and their ids returned."""
    expired = [uuid.uuid4(), uuid.uuid4()]
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[{'id': ad_id} for ad_id in expired])
    manager = AdManager(mock_pool(conn))

    assert await manager.cleanup_expired() == [str(ad_id) for ad_id in expired]
    conn.fetch.assert_awaited_once_with('DELETE FROM ads WHERE expiry < now() RETURNING id')

@pytest.mark.asyncio
async def test_query_ads_failure():
    """Test database errors during search map to PersistenceError."""
    conn = MagicMock()
    conn.fetchval = AsyncMock(side_effect=OSError('connection lost'))
    manager = AdManager(mock_pool(conn))

    with pytest.raises(PersistenceError):
        await manager.query_ads(SearchFilters())
