from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, require_backoffice
from app.db.session import get_db
from app.integrations.delivery_client import (
    DeliveryProviderClientProtocol,
    get_delivery_provider_client,
)
from app.integrations.notifications import OrderUpdatePublisher, get_order_update_publisher
from app.routers.error_translation import translate_delivery_error
from app.models.delivery_company import DeliveryCompany
from app.schemas.delivery import (
    BatchAssignRequest,
    BatchAssignResponse,
    BatchSendCounts,
    BatchSendItem,
    BatchSendRequest,
    BatchSendResponse,
    ConfigCheckResponse,
    DeliveryEventResponse,
    DeliveryEventsResponse,
    DeliveryOrderItem,
    DeliveryOrdersResponse,
    DeliveryStatusResponse,
    LegacySendRequest,
    MappingCheck,
    ProxyListRequest,
    ProxyListResponse,
    SendOrderData,
    SendOrderRequest,
    SendOrderResponse,
    ValidateAllMappingsRequest,
    ValidateAllMappingsResponse,
    ValidateMappingsRequest,
    ValidateMappingsResponse,
    WebhookPayload,
    WebhookResponse,
)
from app.schemas.delivery_company import CompanySummary
from app.services.company_service import get_company
from app.services.config_validator import describe_param_sources, validate_company_configuration
from app.services.dispatch_service import (
    DispatchResult,
    batch_assign_orders,
    batch_send_orders,
    get_delivery_status,
    list_delivery_orders,
    proxy_external_list,
    send_order,
    validate_all_mappings,
    validate_mappings,
)
from app.services.errors import DeliveryError
from app.services.orders_service import list_delivery_events
from app.services.webhook_service import ingest_status_update, verify_webhook_token

router = APIRouter(prefix="/delivery", tags=["delivery"])


def _summary(company: DeliveryCompany) -> CompanySummary:
    return CompanySummary(id=company.id, name=company.name, code=company.code)


def _send_response(result: DispatchResult) -> SendOrderResponse:
    return SendOrderResponse(
        message=(
            "Order re-sent to delivery company"
            if result.is_resend
            else "Order sent to delivery company"
        ),
        data=SendOrderData(
            order_id=result.order.id,
            tracking_number=result.tracking_number,
            status=result.status,
            external_status=result.provider_status,
            is_resend=result.is_resend,
            delivery_company=_summary(result.company),
            delivery_company_response=result.provider_response,
        ),
    )


@router.post("/send", response_model=SendOrderResponse, summary="Send order to delivery company")
def send_order_endpoint(
    payload: SendOrderRequest,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> SendOrderResponse:
    try:
        result = send_order(
            db,
            client,
            payload.order_id,
            company_id=payload.company_id,
            company_code=payload.company_code,
            delivery_fee=payload.delivery_fee,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return _send_response(result)


@router.post(
    "/order",
    response_model=SendOrderResponse,
    summary="Send order (legacy body)",
    deprecated=True,
)
def legacy_send_order_endpoint(
    payload: LegacySendRequest,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> SendOrderResponse:
    try:
        result = send_order(
            db,
            client,
            payload.order.id,
            company_id=payload.company_id,
            company_code=payload.company_code,
            delivery_fee=payload.mapped_data.delivery_fee,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return _send_response(result)


@router.post("/batch-send", response_model=BatchSendResponse, summary="Send several orders")
def batch_send_endpoint(
    payload: BatchSendRequest,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> BatchSendResponse:
    try:
        summary = batch_send_orders(
            db,
            client,
            payload.order_ids,
            company_id=payload.company_id,
            company_code=payload.company_code,
            delivery_fee=payload.delivery_fee,
            stop_on_error=payload.stop_on_error,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err

    return BatchSendResponse(
        success=summary.failed == 0,
        company=_summary(summary.company),
        summary=BatchSendCounts(
            total=summary.total, succeeded=summary.succeeded, failed=summary.failed
        ),
        results=[BatchSendItem(**asdict(entry)) for entry in summary.results],
    )


@router.post(
    "/batch-assign",
    response_model=BatchAssignResponse,
    summary="Assign orders to a company without sending",
)
def batch_assign_endpoint(
    payload: BatchAssignRequest,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> BatchAssignResponse:
    try:
        modified, company = batch_assign_orders(
            db,
            payload.order_ids,
            payload.company_id,
            tracking_number=payload.tracking_number,
            delivery_status=payload.delivery_status,
            order_status=payload.order_status,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return BatchAssignResponse(
        message=f"{modified} order(s) assigned to {company.name}",
        modified_count=modified,
        company=_summary(company),
    )


@router.get(
    "/status/{order_id}",
    response_model=DeliveryStatusResponse,
    summary="Current delivery status",
)
def delivery_status_endpoint(
    order_id: str,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryStatusResponse:
    try:
        return DeliveryStatusResponse(**get_delivery_status(db, client, order_id))
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.post(
    "/validate-mappings",
    response_model=ValidateMappingsResponse,
    summary="Check an order against a company's field mappings",
)
def validate_mappings_endpoint(
    payload: ValidateMappingsRequest,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> ValidateMappingsResponse:
    try:
        check = validate_mappings(db, payload.order_id, payload.company_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return ValidateMappingsResponse(data=MappingCheck(**check))


@router.post(
    "/validate-mappings/all",
    response_model=ValidateAllMappingsResponse,
    summary="Check an order against several companies",
)
def validate_all_mappings_endpoint(
    payload: ValidateAllMappingsRequest,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> ValidateAllMappingsResponse:
    try:
        result = validate_all_mappings(
            db,
            payload.order_id,
            company_ids=payload.company_ids,
            active_only=payload.active_only,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return ValidateAllMappingsResponse(**result)


@router.get(
    "/validate-config/{company_id}",
    response_model=ConfigCheckResponse,
    summary="Check a company's API configuration",
)
def validate_config_endpoint(
    company_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> ConfigCheckResponse:
    try:
        company = get_company(db, company_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err

    check = validate_company_configuration(company)
    sources = describe_param_sources(company)
    return ConfigCheckResponse(
        ok=check.ok,
        issues=check.issues,
        mode=check.mode,
        url=check.url,
        db=sources["db"],
        details=sources["details"],
    )


def require_webhook_token(authorization: str | None = Header(default=None)) -> None:
    """Runs before the body is validated, so a bad token is a 401 even for a malformed push."""
    try:
        verify_webhook_token(authorization)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.post("/webhook", response_model=WebhookResponse, summary="Carrier status webhook")
def webhook_endpoint(
    payload: WebhookPayload,
    _token: None = Depends(require_webhook_token),
    db: Session = Depends(get_db),
    publisher: OrderUpdatePublisher = Depends(get_order_update_publisher),
) -> WebhookResponse:
    try:
        outcome = ingest_status_update(db, payload, publisher)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return WebhookResponse(
        order_id=outcome.order.id, status=outcome.status, changed=outcome.changed
    )


@router.post(
    "/proxy-list", response_model=ProxyListResponse, summary="Fetch a carrier lookup list"
)
def proxy_list_endpoint(
    payload: ProxyListRequest,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> ProxyListResponse:
    try:
        data = proxy_external_list(
            db,
            client,
            payload.url,
            headers=payload.headers,
            params=payload.params,
            company_id=payload.company_id,
            company_code=payload.company_code,
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return ProxyListResponse(data=data)


@router.get(
    "/orders", response_model=DeliveryOrdersResponse, summary="Orders handed to carriers"
)
def delivery_orders_endpoint(
    order_id: str | None = Query(default=None, alias="orderId"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryOrdersResponse:
    items = list_delivery_orders(db, order_id=order_id, limit=limit)
    return DeliveryOrdersResponse(items=[DeliveryOrderItem(**item) for item in items])


@router.get(
    "/orders/{order_id}/events",
    response_model=DeliveryEventsResponse,
    summary="Delivery status timeline",
)
def delivery_events_endpoint(
    order_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryEventsResponse:
    try:
        events = list_delivery_events(db, order_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return DeliveryEventsResponse(
        items=[DeliveryEventResponse.model_validate(event) for event in events]
    )
