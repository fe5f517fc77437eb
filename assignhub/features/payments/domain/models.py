"""
Lemon Squeezy webhook and checkout models.

Only the fields this service reads are declared; everything else in the
provider payload is kept as extra data.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class WebhookEventName(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_REFUNDED = "order_refunded"


PAYMENT_METHOD = "lemon_squeezy"


class WebhookMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_name: str
    custom_data: dict[str, Any] | None = None


class FirstOrderItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_name: str | None = None


class OrderAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_id: str | None = None
    currency: str | None = None
    total: Decimal | None = None  # minor units (cents)
    custom_data: dict[str, Any] | None = None
    first_order_item: FirstOrderItem | None = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user_id(cls, value):
        return str(value) if value is not None else None


class OrderData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str | None = None
    attributes: OrderAttributes = Field(default_factory=OrderAttributes)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value)


class WebhookEvent(BaseModel):
    """A Lemon Squeezy webhook body: {"meta": {...}, "data": {...}}."""

    meta: WebhookMeta
    data: OrderData

    @property
    def event_name(self) -> str:
        return self.meta.event_name

    @property
    def order_id(self) -> str:
        return self.data.id

    @property
    def event_key(self) -> str:
        """Identity used to detect redelivery of the same provider event."""
        return f"{self.event_name}:{self.order_id}"

    def _custom_value(self, key: str) -> Any:
        for custom in (self.meta.custom_data, self.data.attributes.custom_data):
            if custom and custom.get(key):
                return custom[key]
        return None

    def assignment_id(self) -> str | None:
        """Assignment referenced by the order: checkout custom data first, then the line item."""
        value = self._custom_value("assignment_id")
        if value:
            return str(value)
        item = self.data.attributes.first_order_item
        return item.product_name if item and item.product_name else None

    def student_id(self) -> str | None:
        value = self._custom_value("student_id")
        return str(value) if value else self.data.attributes.user_id

    def amount(self) -> Decimal:
        """Order total in major currency units."""
        total = self.data.attributes.total or Decimal(0)
        return total / 100


class CheckoutRequest(BaseModel):
    assignment_id: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0)
    assignment_title: str = Field(..., min_length=1)
    student_email: str | None = None


class CheckoutResponse(BaseModel):
    checkout_url: str
    checkout_id: str
