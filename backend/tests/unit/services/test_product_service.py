import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from inference_events.core.cache import ProductCache
from inference_events.core.exceptions import OutboxSerializationError, ProductNotFoundError
from inference_events.models.outbox import OutboxEvent, OutboxStatus
from inference_events.models.product import Product
from inference_events.schemas.product import ProductCreate, ProductUpdate
from inference_events.services import product_service as product_service_module
from inference_events.services.product_service import ProductService


@pytest.fixture
def mock_cache():
    cache = AsyncMock(spec=ProductCache)
    cache.get.return_value = None
    return cache


@pytest.fixture
def product_in():
    return ProductCreate(
        name=" Desk Lamp ",
        description="Warm white LED",
        price=Decimal("24.90"),
        stock_level=12,
    )


async def _count(session_factory, model):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _outbox_events(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(OutboxEvent).order_by(OutboxEvent.created_at.asc()))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_product_appends_event_in_same_transaction(session_factory, mock_cache, product_in):
    # Act
    async with session_factory() as session:
        created = await ProductService(session, mock_cache).create_product(product_in)

    # Assert
    assert created.name == "Desk Lamp"
    assert created.published is False
    assert await _count(session_factory, Product) == 1

    [event] = await _outbox_events(session_factory)
    assert event.event_type == "PRODUCT_CREATED"
    assert event.aggregate_id == str(created.id)
    assert event.status == OutboxStatus.NEW.value
    payload = event.payload
    assert payload["productId"] == str(created.id)
    assert payload["price"] == "24.90"
    mock_cache.invalidate.assert_awaited_once_with(ProductCache.ALL_PRODUCTS_KEY)


@pytest.mark.asyncio
async def test_serialization_failure_rolls_back_product(session_factory, mock_cache, product_in, monkeypatch):
    # Arrange
    monkeypatch.setattr(product_service_module, "_product_payload", lambda product: {"bad": object()})

    # Act
    async with session_factory() as session:
        with pytest.raises(OutboxSerializationError):
            await ProductService(session, mock_cache).create_product(product_in)

    # Assert
    assert await _count(session_factory, Product) == 0
    assert await _count(session_factory, OutboxEvent) == 0
    mock_cache.invalidate.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_product_appends_event_only_when_something_changed(session_factory, mock_cache, product_in):
    # Arrange
    async with session_factory() as session:
        created = await ProductService(session, mock_cache).create_product(product_in)

    # Act
    async with session_factory() as session:
        service = ProductService(session, mock_cache)
        unchanged = await service.update_product(created.id, ProductUpdate(stock_level=12))
        changed = await service.update_product(created.id, ProductUpdate(stock_level=3, is_published=True))

    # Assert
    assert unchanged is False
    assert changed is True
    events = await _outbox_events(session_factory)
    assert [e.event_type for e in events] == ["PRODUCT_CREATED", "PRODUCT_UPDATED"]
    payload = events[1].payload
    assert payload["stockLevel"] == 3
    assert payload["published"] is True


@pytest.mark.asyncio
async def test_delete_product_appends_deleted_event(session_factory, mock_cache, product_in):
    async with session_factory() as session:
        created = await ProductService(session, mock_cache).create_product(product_in)

    async with session_factory() as session:
        await ProductService(session, mock_cache).delete_product(created.id)

    assert await _count(session_factory, Product) == 0
    events = await _outbox_events(session_factory)
    assert events[-1].event_type == "PRODUCT_DELETED"
    assert events[-1].payload == {"productId": str(created.id)}


@pytest.mark.asyncio
async def test_missing_product_raises_not_found(session_factory, mock_cache):
    missing = uuid.uuid4()
    async with session_factory() as session:
        service = ProductService(session, mock_cache)
        with pytest.raises(ProductNotFoundError):
            await service.get_product(missing)
        with pytest.raises(ProductNotFoundError):
            await service.update_product(missing, ProductUpdate(name="x"))
        with pytest.raises(ProductNotFoundError):
            await service.delete_product(missing)

    assert await _count(session_factory, OutboxEvent) == 0


@pytest.mark.asyncio
async def test_get_product_is_served_from_cache(mock_cache):
    # Arrange
    mock_db = AsyncMock()
    product_id = uuid.uuid4()
    mock_cache.get.return_value = {
        "id": str(product_id),
        "name": "Lamp",
        "description": "LED",
        "price": "24.90",
        "stock_level": 1,
        "published": True,
    }

    # Act
    product = await ProductService(mock_db, mock_cache).get_product(product_id)

    # Assert
    assert product.id == product_id
    mock_db.get.assert_not_called()
    mock_cache.get.assert_awaited_once_with(ProductCache.product_key(product_id))


@pytest.mark.asyncio
async def test_list_products_fills_cache_on_miss(session_factory, mock_cache, product_in):
    async with session_factory() as session:
        await ProductService(session, mock_cache).create_product(product_in)

    async with session_factory() as session:
        products = await ProductService(session, mock_cache).list_products()

    assert [p.name for p in products] == ["Desk Lamp"]
    key, value = mock_cache.put.await_args.args
    assert key == ProductCache.ALL_PRODUCTS_KEY
    assert value[0]["name"] == "Desk Lamp"


@pytest.mark.asyncio
async def test_update_product_clears_image_url_when_sent_as_null(session_factory, mock_cache, product_in):
    # Arrange
    product_in.image_url = "https://cdn.example.com/lamp.png"
    async with session_factory() as session:
        created = await ProductService(session, mock_cache).create_product(product_in)

    # Act
    async with session_factory() as session:
        service = ProductService(session, mock_cache)
        cleared = await service.update_product(
            created.id, ProductUpdate.model_validate({"image_url": None, "name": None})
        )
        untouched = await service.update_product(created.id, ProductUpdate(stock_level=12))

    # Assert
    assert cleared is True
    assert untouched is False
    async with session_factory() as session:
        product = await session.get(Product, created.id)
    assert product.image_url is None
    assert product.name == "Desk Lamp"
    events = await _outbox_events(session_factory)
    assert events[-1].event_type == "PRODUCT_UPDATED"
    assert events[-1].payload["imageUrl"] is None
