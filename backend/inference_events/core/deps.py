from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.cache import ProductCache, get_redis_client
from ..core.database import get_db
from ..services.product_service import ProductService

def get_product_cache() -> ProductCache:
    """
    Dependency for the product read cache. Works without Redis (every lookup misses).
    """
    return ProductCache(get_redis_client())

def get_product_service(
    db: AsyncSession = Depends(get_db),
    cache: ProductCache = Depends(get_product_cache),
) -> ProductService:
    return ProductService(db, cache)
