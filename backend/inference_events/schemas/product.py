from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, UUID4


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    price: Decimal = Field(gt=0)
    image_url: Optional[str] = None
    stock_level: int = Field(ge=0)


# All fields optional; only the ones sent are compared and applied
class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    price: Optional[Decimal] = Field(default=None, gt=0)
    image_url: Optional[str] = None
    stock_level: Optional[int] = Field(default=None, ge=0)
    is_published: Optional[bool] = None


class Product(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    name: str
    description: str
    price: Decimal
    image_url: Optional[str] = None
    stock_level: int
    published: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
