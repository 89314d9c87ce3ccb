from app.schemas.delivery import (
    BatchSendRequest,
    BatchSendResponse,
    DeliveryEventResponse,
    SendOrderRequest,
    SendOrderResponse,
    WebhookPayload,
    WebhookResponse,
)
from app.schemas.delivery_company import (
    ApiConfiguration,
    DeliveryCompanyCreate,
    DeliveryCompanyResponse,
    DeliveryCompanyUpdate,
)

__all__ = [
    "ApiConfiguration",
    "DeliveryCompanyCreate",
    "DeliveryCompanyUpdate",
    "DeliveryCompanyResponse",
    "SendOrderRequest",
    "SendOrderResponse",
    "BatchSendRequest",
    "BatchSendResponse",
    "WebhookPayload",
    "WebhookResponse",
    "DeliveryEventResponse",
]
