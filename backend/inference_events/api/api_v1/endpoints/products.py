from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ....core.deps import get_product_service
from ....core.exceptions import ProductNotFoundError
from ....schemas.product import Product, ProductCreate, ProductUpdate
from ....services.product_service import ProductService

router = APIRouter()

# Shared caches may keep reads for 60s; browsers should not
CACHE_JSON = "public, s-maxage=60, max-age=0"
NO_STORE = "no-store"

@router.get("/", response_model=List[Product])
async def list_products(
    response: Response,
    product_service: ProductService = Depends(get_product_service)
):
    """
    List all products.
    """
    response.headers["Cache-Control"] = CACHE_JSON
    return await product_service.list_products()

@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: UUID,
    response: Response,
    product_service: ProductService = Depends(get_product_service)
):
    try:
        product = await product_service.get_product(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    response.headers["Cache-Control"] = CACHE_JSON
    return product

@router.post("/", response_model=UUID, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_in: ProductCreate,
    response: Response,
    product_service: ProductService = Depends(get_product_service)
):
    """
    Create a product and its PRODUCT_CREATED event in one transaction.
    """
    product = await product_service.create_product(product_in)
    response.headers["Cache-Control"] = NO_STORE
    return product.id

@router.put("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_product(
    product_id: UUID,
    product_in: ProductUpdate,
    product_service: ProductService = Depends(get_product_service)
):
    try:
        await product_service.update_product(product_id, product_in)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers={"Cache-Control": NO_STORE})

@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    product_service: ProductService = Depends(get_product_service)
):
    try:
        await product_service.delete_product(product_id)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers={"Cache-Control": NO_STORE})
