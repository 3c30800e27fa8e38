"""
Sales transaction models.

A transaction is one sale line item exported by a marketplace store.
``selling_price`` and ``cost_price`` are line totals, so the revenue a row
contributes is exactly its ``selling_price``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from marketpulse.models.analytics import Money
from marketpulse.models.enums import DeliveryStatus


class TransactionRecord(BaseModel):
    """
    A stored sale line item.

    Attributes:
        id: Unique transaction identifier
        order_number: Marketplace order number
        manual_order_number: Optional internal order reference
        pic_name: Person in charge of the order
        platform_id: Marketplace platform the order came from
        store_id: Store within the platform
        product_sku: Product SKU (``sku_reference`` in marketplace exports)
        product_name: Product display name
        quantity: Units sold
        cost_price: Total cost of the line
        selling_price: Total selling price of the line
        profit: selling_price - cost_price
        delivery_status: Fulfilment state
        occurred_at: When the order was created
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    order_number: str
    manual_order_number: Optional[str] = None
    pic_name: Optional[str] = None
    platform_id: str
    store_id: str
    product_sku: Optional[str] = None
    product_name: str
    quantity: int = Field(ge=1)
    cost_price: Money = Field(ge=0)
    selling_price: Money = Field(ge=0)
    profit: Money
    delivery_status: DeliveryStatus
    expedition: Optional[str] = None
    tracking_number: Optional[str] = None
    occurred_at: datetime
    upload_batch_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransactionCreate(BaseModel):
    """Payload for manual transaction entry. Profit is computed server-side."""

    order_number: str = Field(min_length=1, max_length=100)
    manual_order_number: Optional[str] = Field(default=None, max_length=100)
    pic_name: Optional[str] = Field(default=None, max_length=100)
    platform_id: str = Field(min_length=1)
    store_id: str = Field(min_length=1)
    product_sku: Optional[str] = Field(default=None, max_length=100)
    product_name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1, description="Units sold")
    cost_price: Decimal = Field(ge=0, description="Line cost")
    selling_price: Decimal = Field(ge=0, description="Line selling price")
    delivery_status: DeliveryStatus
    expedition: Optional[str] = None
    tracking_number: Optional[str] = None
    occurred_at: datetime

    @field_validator("delivery_status", mode="before")
    @classmethod
    def parse_status_label(cls, v):
        """Accept marketplace labels as well as enum values."""
        status = DeliveryStatus.from_label(v)
        return status if status is not None else v

    @field_validator("order_number", "product_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Ensure required text fields carry content."""
        if not v.strip():
            raise ValueError("Field cannot be blank")
        return v.strip()

    @property
    def profit(self) -> Decimal:
        return self.selling_price - self.cost_price


class TransactionUpdate(BaseModel):
    """Partial update of a stored transaction."""

    order_number: Optional[str] = Field(default=None, min_length=1)
    manual_order_number: Optional[str] = None
    pic_name: Optional[str] = None
    platform_id: Optional[str] = None
    store_id: Optional[str] = None
    product_sku: Optional[str] = None
    product_name: Optional[str] = Field(default=None, min_length=1)
    quantity: Optional[int] = Field(default=None, ge=1)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    selling_price: Optional[Decimal] = Field(default=None, ge=0)
    delivery_status: Optional[DeliveryStatus] = None
    expedition: Optional[str] = None
    tracking_number: Optional[str] = None
    occurred_at: Optional[datetime] = None

    @field_validator("delivery_status", mode="before")
    @classmethod
    def parse_status_label(cls, v):
        """Accept marketplace labels as well as enum values."""
        if v is None:
            return v
        status = DeliveryStatus.from_label(v)
        return status if status is not None else v

    @model_validator(mode="after")
    def validate_not_empty(self) -> "TransactionUpdate":
        """Ensure at least one field is being changed."""
        if not self.model_dump(exclude_unset=True):
            raise ValueError("At least one field must be provided")
        return self


class TransactionFilters(BaseModel):
    """Listing filters. Date bounds are inclusive; ``search`` matches name, SKU or order number."""

    order_number: Optional[str] = None
    delivery_status: Optional[DeliveryStatus] = None
    platform_ids: list[str] = Field(default_factory=list)
    store_ids: list[str] = Field(default_factory=list)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None


class TransactionPage(BaseModel):
    """One page of a filtered transaction listing."""

    items: list[TransactionRecord]
    total_count: int
    page: int
    limit: int
