import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field

from app.config import settings
from app.models.delivery_event import DeliveryEventSource
from app.schemas.common import CamelModel
from app.schemas.delivery_company import CompanySummary

InternalStatus = Literal[
    "assigned",
    "picked_up",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "delivery_failed",
    "returned",
    "cancelled",
]


def _check_batch_size(value: list[str]) -> list[str]:
    if len(value) > settings.batch_max_orders:
        raise ValueError(f"At most {settings.batch_max_orders} orders per batch")
    return value


OrderIds = Annotated[list[str], Field(min_length=1), AfterValidator(_check_batch_size)]


class SendOrderRequest(CamelModel):
    order_id: str = Field(min_length=1)
    company_id: str | None = None
    company_code: str | None = None
    delivery_fee: float = 0


class LegacyOrderRef(BaseModel):
    id: str = Field(min_length=1)


class LegacyMappedData(CamelModel):
    delivery_fee: float = 0


class LegacySendRequest(CamelModel):
    order: LegacyOrderRef
    company_id: str | None = None
    company_code: str | None = None
    mapped_data: LegacyMappedData = Field(default_factory=LegacyMappedData)


class SendOrderData(CamelModel):
    order_id: uuid.UUID
    tracking_number: str | None = None
    status: str
    external_status: str | None = None
    is_resend: bool = False
    delivery_company: CompanySummary
    delivery_company_response: Any = None


class SendOrderResponse(CamelModel):
    success: bool = True
    message: str
    data: SendOrderData


class BatchSendRequest(CamelModel):
    order_ids: OrderIds
    company_id: str | None = None
    company_code: str | None = None
    delivery_fee: float = 0
    stop_on_error: bool = False


class BatchSendItem(CamelModel):
    order_id: str
    success: bool
    tracking_number: str | None = None
    status: str | None = None
    error: str | None = None
    code: str | None = None
    missing: list[str] | None = None


class BatchSendCounts(CamelModel):
    total: int
    succeeded: int
    failed: int


class BatchSendResponse(CamelModel):
    success: bool
    company: CompanySummary
    summary: BatchSendCounts
    results: list[BatchSendItem]


class BatchAssignRequest(CamelModel):
    order_ids: OrderIds
    company_id: str = Field(min_length=1)
    tracking_number: str | None = None
    delivery_status: InternalStatus | None = None
    order_status: str | None = None


class BatchAssignResponse(CamelModel):
    success: bool = True
    message: str
    modified_count: int
    company: CompanySummary


class DeliveryStatusResponse(CamelModel):
    success: bool = True
    status: str
    internal_status: str
    provider_status: str | None = None
    tracking_number: str | None = None
    source: str
    raw: Any = None


class ValidateMappingsRequest(CamelModel):
    order_id: str = Field(min_length=1)
    company_id: str = Field(min_length=1)


class MappingCheck(CamelModel):
    is_valid: bool
    errors: list[str]
    missing_fields: list[str]
    invalid_fields: list[str]
    payload_preview: dict[str, Any]


class ValidateMappingsResponse(CamelModel):
    success: bool = True
    data: MappingCheck


class ValidateAllMappingsRequest(CamelModel):
    order_id: str = Field(min_length=1)
    company_ids: list[str] | None = None
    active_only: bool = True


class CompanyMappingResult(CamelModel):
    company_id: str
    company_name: str
    company_code: str
    is_active: bool
    is_valid: bool
    missing_fields: list[str]
    payload_preview: dict[str, Any]


class ValidateAllMappingsResponse(CamelModel):
    all_valid: bool
    results: list[CompanyMappingResult]


class ParamSources(CamelModel):
    api_params_db: Any = None
    env_db: Any = None
    credentials_db: Any = None
    custom_fields_db: Any = None
    query_db: Any = None


class DbResolution(CamelModel):
    effective_db: Any = None
    sources: ParamSources


class ConfigDetails(CamelModel):
    auth_method: str
    format: str
    required_params: list[str]


class ConfigCheckResponse(CamelModel):
    ok: bool
    issues: list[str]
    mode: str
    url: str
    db: DbResolution
    details: ConfigDetails


class WebhookPayload(BaseModel):
    """Carrier status push; both snake_case and camelCase keys are accepted."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str | None = Field(default=None, validation_alias=AliasChoices("order_id", "orderId"))
    order_number: str | None = Field(
        default=None, validation_alias=AliasChoices("order_number", "orderNumber")
    )
    tracking_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tracking_number", "trackingNumber", "tracking"),
    )
    status: str = Field(
        min_length=1,
        validation_alias=AliasChoices(
            "status", "providerStatus", "provider_status", "deliveryStatus", "delivery_status"
        ),
    )
    company_id: str | None = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )
    company_code: str | None = Field(
        default=None, validation_alias=AliasChoices("company_code", "companyCode")
    )
    occurred_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("occurred_at", "occurredAt", "timestamp")
    )
    order_status: str | None = Field(
        default=None, validation_alias=AliasChoices("order_status", "orderStatus")
    )
    notes: str | None = None
    estimated_date: datetime | None = Field(
        default=None, validation_alias=AliasChoices("estimated_date", "estimatedDate")
    )
    actual_date: datetime | None = Field(
        default=None, validation_alias=AliasChoices("actual_date", "actualDate")
    )


class WebhookResponse(CamelModel):
    success: bool = True
    order_id: uuid.UUID
    status: str
    changed: bool


class ProxyListRequest(CamelModel):
    url: str = Field(min_length=1)
    headers: dict[str, Any] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    company_id: str | None = None
    company_code: str | None = None


class ProxyListResponse(CamelModel):
    success: bool = True
    data: Any = None


class DeliveryOrderItem(CamelModel):
    id: uuid.UUID
    order_number: str
    status: str
    tracking_number: str | None = None
    delivery_company: CompanySummary | None = None
    created_at: datetime | None = None
    customer_info: dict[str, Any] | None = None


class DeliveryOrdersResponse(CamelModel):
    items: list[DeliveryOrderItem]


class DeliveryEventResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    company_id: uuid.UUID | None = None
    type: str
    source: DeliveryEventSource
    message: str
    payload: dict[str, Any]
    created_at: datetime


class DeliveryEventsResponse(CamelModel):
    items: list[DeliveryEventResponse]
