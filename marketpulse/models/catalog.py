"""
Catalog models: marketplace platforms, stores, products and advertising spend.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from marketpulse.models.analytics import Money


class Platform(BaseModel):
    """A marketplace (e.g. Shopee, Tokopedia)."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    platform_name: str
    platform_code: str
    is_active: bool = True
    created_at: Optional[datetime] = None


class PlatformCreate(BaseModel):
    platform_name: str = Field(min_length=1, max_length=100)
    platform_code: str = Field(min_length=1, max_length=20)

    @field_validator("platform_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Codes are stored upper-case without surrounding whitespace."""
        return v.strip().upper()


class Store(BaseModel):
    """A seller store on one platform."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    store_name: str
    store_id_external: Optional[str] = None
    platform_id: str
    pic_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class StoreCreate(BaseModel):
    store_name: str = Field(min_length=1, max_length=150)
    store_id_external: Optional[str] = Field(default=None, max_length=100)
    platform_id: str = Field(min_length=1)
    pic_name: Optional[str] = Field(default=None, max_length=100)


class AdExpense(BaseModel):
    """Advertising spend booked against a platform (and optionally a store)."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    expense_date: date
    platform_id: str
    store_id: Optional[str] = None
    amount: Money = Field(ge=0)
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class AdExpenseCreate(BaseModel):
    expense_date: date
    platform_id: str = Field(min_length=1)
    store_id: Optional[str] = None
    amount: Decimal = Field(gt=0, description="Spend amount")
    notes: Optional[str] = Field(default=None, max_length=500)


class StoreUpdate(BaseModel):
    """Partial store edit. Omitted fields keep their stored value."""

    store_name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    store_id_external: Optional[str] = Field(default=None, max_length=100)
    platform_id: Optional[str] = Field(default=None, min_length=1)
    pic_name: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class AdExpenseUpdate(BaseModel):
    expense_date: Optional[date] = None
    platform_id: Optional[str] = Field(default=None, min_length=1)
    store_id: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class Product(BaseModel):
    """A catalog product, keyed by its SKU reference."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    sku_reference: str
    product_name: str
    category: Optional[str] = None
    base_cost: Money = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductCreate(BaseModel):
    sku_reference: str = Field(min_length=1, max_length=100)
    product_name: str = Field(min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    base_cost: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True

    @field_validator("sku_reference")
    @classmethod
    def strip_sku(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("SKU reference cannot be blank")
        return v


class ProductUpdate(BaseModel):
    sku_reference: Optional[str] = Field(default=None, min_length=1, max_length=100)
    product_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    base_cost: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("sku_reference")
    @classmethod
    def strip_sku(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v
