import logging
import uuid
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import ProductCache
from ..core.exceptions import ProductNotFoundError
from ..models.product import Product
from ..schemas.product import Product as ProductSchema
from ..schemas.product import ProductCreate, ProductUpdate
from .outbox_store import OutboxStore

logger = logging.getLogger(__name__)

# ProductUpdate field -> Product column
_UPDATE_FIELDS = {
    "name": "name",
    "description": "description",
    "price": "price",
    "image_url": "image_url",
    "stock_level": "stock_level",
    "is_published": "published",
}
_NULLABLE_FIELDS = {"image_url"}


def _product_payload(product: Product) -> Dict[str, Any]:
    return {
        "productId": str(product.id),
        "name": product.name,
        "description": product.description,
        "price": str(product.price),
        "imageUrl": product.image_url,
        "stockLevel": product.stock_level,
        "published": product.published,
    }


class ProductService:
    """
    Product CRUD. Every write appends its outbox event in the same transaction,
    so a product change never commits without its notification.
    """

    def __init__(self, db: AsyncSession, cache: ProductCache):
        self.db = db
        self.cache = cache
        self.outbox = OutboxStore(db)

    async def list_products(self) -> List[ProductSchema]:
        cached = await self.cache.get(ProductCache.ALL_PRODUCTS_KEY)
        if cached is not None:
            return [ProductSchema.model_validate(item) for item in cached]

        logger.info("DB HIT: list_products()")
        result = await self.db.execute(select(Product).order_by(Product.created_at.asc()))
        products = [ProductSchema.model_validate(p) for p in result.scalars().all()]
        await self.cache.put(
            ProductCache.ALL_PRODUCTS_KEY,
            [p.model_dump(mode="json") for p in products],
        )
        return products

    async def get_product(self, product_id: UUID) -> ProductSchema:
        key = ProductCache.product_key(product_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return ProductSchema.model_validate(cached)

        logger.info(f"DB HIT: get_product({product_id})")
        product = await self.db.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        schema = ProductSchema.model_validate(product)
        await self.cache.put(key, schema.model_dump(mode="json"))
        return schema

    async def create_product(self, product_in: ProductCreate) -> ProductSchema:
        product = Product(
            id=uuid.uuid4(),
            name=product_in.name.strip(),
            description=product_in.description.strip(),
            price=product_in.price,
            image_url=product_in.image_url,
            stock_level=product_in.stock_level,
            published=False,
        )
        try:
            self.db.add(product)
            await self.outbox.append("PRODUCT_CREATED", str(product.id), _product_payload(product))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(ProductCache.ALL_PRODUCTS_KEY)
        logger.info(f"Created product {product.id}")
        return ProductSchema.model_validate(product)

    async def update_product(self, product_id: UUID, update: ProductUpdate) -> bool:
        """Applies the fields present in the request. Returns False when nothing changed (no event is appended)."""
        try:
            product = await self.db.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            changed = False
            for name in update.model_fields_set:
                field = _UPDATE_FIELDS[name]
                value = getattr(update, name)
                # Only nullable columns can be cleared with an explicit null
                if value is None and field not in _NULLABLE_FIELDS:
                    continue
                if value != getattr(product, field):
                    setattr(product, field, value)
                    changed = True

            if changed:
                await self.outbox.append("PRODUCT_UPDATED", str(product.id), _product_payload(product))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if changed:
            await self.cache.invalidate(
                ProductCache.product_key(product_id), ProductCache.ALL_PRODUCTS_KEY
            )
        return changed

    async def delete_product(self, product_id: UUID) -> None:
        try:
            product = await self.db.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            await self.db.delete(product)
            await self.outbox.append("PRODUCT_DELETED", str(product_id), {"productId": str(product_id)})
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(ProductCache.product_key(product_id), ProductCache.ALL_PRODUCTS_KEY)
        logger.info(f"Deleted product {product_id}")
