"""
Order models. Python and SQL use snake_case; the HTTP API and broadcast payloads use camelCase aliases.
"""
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

OrderType = Literal["pickup", "delivery"]
OrderStatus = Literal[
    "received",
    "confirmed",
    "preparing",
    "ready",
    "out_for_delivery",
    "completed",
    "canceled",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self, **kwargs) -> dict:
        """JSON-safe camelCase dict, as sent to clients."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class OrderItemIn(CamelModel):
    product_id: str | None = None
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    category: str | None = None


class OrderItem(CamelModel):
    product_id: str | None = None
    name: str
    price: float
    quantity: int
    category: str = "other"
    subtotal: float


class OrderCreate(CamelModel):
    type: OrderType
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str = Field(..., min_length=1)
    address: str | None = None
    notes: str | None = None
    items: list[OrderItemIn] = Field(..., min_length=1)
    subtotal: float | None = Field(default=None, ge=0)
    total: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _address_for_delivery(self) -> "OrderCreate":
        if self.type == "delivery" and not (self.address or "").strip():
            raise ValueError("address is required for delivery orders")
        return self


class Order(CamelModel):
    id: UUID
    short_id: str
    name: str
    email: str
    phone: str
    type: OrderType
    address: str | None = None
    notes: str | None = None
    status: OrderStatus
    items: list[OrderItem] = []
    item_count: int
    subtotal: float
    total: float
    created_at: datetime
    updated_at: datetime | None = None
    confirmed_at: datetime | None = None
    prepared_at: datetime | None = None
    ready_at: datetime | None = None
    out_for_delivery_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0


class PublicOrder(CamelModel):
    """Projection served to anyone holding the shortId: no contact details."""
    id: UUID
    short_id: str
    name: str
    type: OrderType
    status: OrderStatus
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    prepared_at: datetime | None = None
    ready_at: datetime | None = None
    out_for_delivery_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @classmethod
    def from_order(cls, order: Order) -> "PublicOrder":
        return cls.model_validate(order.model_dump(include=set(cls.model_fields)))


class StatusUpdateBody(BaseModel):
    # Left as plain str so unknown values reach the state machine and come back as 400
    status: str | None = None
    version: int | None = None


class OrderCreated(CamelModel):
    id: UUID
    short_id: str
    message: str = "Order placed successfully"
