from datetime import datetime
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .lifecycle import ClientEvent, OrderStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateOrderIn(CamelModel):
    product_id: Optional[str] = None

class CreateOrderOut(CamelModel):
    payment_order_id: str  # human order reference (the gateway receipt)
    payment_token: str
    gateway_order_id: str
    amount: float
    amount_minor_units: int
    currency: str
    checkout_key_id: str
    product_title: str
    merchant_name: str


class SubmitPaymentIn(CamelModel):
    payment_token: Optional[str] = None
    gateway_order_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId"))
    gateway_payment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gatewayPaymentId", "razorpayPaymentId"))
    gateway_signature: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gatewaySignature", "razorpaySignature"))
    gateway_event: ClientEvent = ClientEvent.CHECKOUT_SUCCESS
    failure_reason: Optional[str] = None

class SubmitPaymentOut(CamelModel):
    status: OrderStatus


class PaymentStatusIn(CamelModel):
    payment_token: Optional[str] = None

class PaymentStatusOut(CamelModel):
    status: OrderStatus
    failure_reason: Optional[str] = None
    amount: float
    product_title: str
    updated_at: datetime


# Gateway webhook body; only the fields this service reads are declared.
class WebhookPaymentEntity(BaseModel):
    id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    error_description: Optional[str] = None

class WebhookOrderEntity(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None

class WebhookPaymentWrapper(BaseModel):
    entity: Optional[WebhookPaymentEntity] = None

class WebhookOrderWrapper(BaseModel):
    entity: Optional[WebhookOrderEntity] = None

class WebhookPayload(BaseModel):
    payment: Optional[WebhookPaymentWrapper] = None
    order: Optional[WebhookOrderWrapper] = None

class WebhookEvent(BaseModel):
    event: Optional[str] = None
    payload: Optional[WebhookPayload] = None

    @property
    def payment_entity(self) -> Optional[WebhookPaymentEntity]:
        return self.payload.payment.entity if self.payload and self.payload.payment else None

    @property
    def order_entity(self) -> Optional[WebhookOrderEntity]:
        return self.payload.order.entity if self.payload and self.payload.order else None
