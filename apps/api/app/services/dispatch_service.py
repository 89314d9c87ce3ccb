import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.integrations.delivery_client import DeliveryProviderClientProtocol, ProviderResult
from app.integrations.errors import PreflightError, ProviderError, ProviderRejectedError
from app.models.delivery_company import DeliveryCompany
from app.models.delivery_event import DeliveryEventSource
from app.models.order import Order
from app.observability import log_event, metrics_store, observe_timing
from app.services.company_service import (
    find_company,
    find_company_by_code,
    get_company,
    list_companies,
)
from app.services.config_validator import validate_company_configuration
from app.services.errors import DeliveryError, company_not_found
from app.services.field_mapping import validate_required_mappings
from app.services.orders_service import (
    apply_delivery_status,
    get_order,
    now_utc,
    parse_order_id,
    set_tracking_number,
)
from app.services.state_machine import DeliveryStatus
from app.services.status_mapper import map_status


@dataclass
class DispatchResult:
    order: Order
    company: DeliveryCompany
    tracking_number: str | None
    status: str
    provider_status: str | None
    provider_response: Any
    is_resend: bool


@dataclass
class BatchEntry:
    order_id: str
    success: bool
    tracking_number: str | None = None
    status: str | None = None
    error: str | None = None
    code: str | None = None
    missing: list[str] | None = None


@dataclass
class BatchSendSummary:
    company: DeliveryCompany
    total: int
    results: list[BatchEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for entry in self.results if entry.success)

    @property
    def failed(self) -> int:
        return sum(1 for entry in self.results if not entry.success)


def resolve_company(
    db: Session,
    company_id: str | None = None,
    company_code: str | None = None,
) -> DeliveryCompany:
    """Explicit id, then code, then the active default, then the first active company by name.

    An id or code that matches nothing falls through to the next step.
    """
    company = find_company(db, company_id) if company_id else None
    if company is None and company_code:
        company = find_company_by_code(db, company_code)
    if company is not None:
        return company

    company = db.scalar(
        select(DeliveryCompany).where(
            DeliveryCompany.is_active.is_(True), DeliveryCompany.is_default.is_(True)
        )
    )
    if company is None:
        company = db.scalar(
            select(DeliveryCompany)
            .where(DeliveryCompany.is_active.is_(True))
            .order_by(DeliveryCompany.name.asc())
            .limit(1)
        )
    if company is None:
        raise company_not_found()
    return company


def provider_failure(err: ProviderError) -> DeliveryError:
    details: dict[str, Any] = {"service": err.service, "providerCode": err.code}
    if err.status_code is not None:
        details["providerStatus"] = err.status_code
    if isinstance(err.response_body, (dict, list)):
        details["details"] = err.response_body
    if isinstance(err, ProviderRejectedError):
        return DeliveryError(
            status_code=400, code="provider_rejected", message=err.message, details=details
        )
    return DeliveryError(
        status_code=502, code="provider_unavailable", message=err.message, details=details
    )


def _preflight_failure(err: PreflightError) -> DeliveryError:
    details: dict[str, Any] = {}
    if "missing" in err.details:
        key = "missingFields" if err.code == "MAPPING_MISSING" else "missing"
        details[key] = err.details["missing"]
    if "payload_preview" in err.details:
        details["payloadPreview"] = err.details["payload_preview"]
    if "issues" in err.details:
        details["issues"] = err.details["issues"]
    return DeliveryError(status_code=400, code=err.code, message=err.message, details=details)


def _check_preconditions(order: Order, company: DeliveryCompany, delivery_fee: float) -> None:
    config = validate_company_configuration(company)
    if not config.ok:
        raise DeliveryError(
            status_code=400,
            code="CONFIG_INVALID",
            message="Delivery company configuration is incomplete",
            details={"issues": config.issues, "mode": config.mode, "url": config.url},
        )

    mapping = validate_required_mappings(order, company, {"delivery_fee": delivery_fee})
    if not mapping.ok:
        raise DeliveryError(
            status_code=400,
            code="MAPPING_MISSING",
            message="Missing required mapped fields",
            details={"missingFields": mapping.missing, "payloadPreview": mapping.payload},
        )


def _apply_result(
    db: Session,
    order: Order,
    company: DeliveryCompany,
    result: ProviderResult,
    delivery_fee: float,
) -> str:
    order.delivery_company_id = company.id
    status = map_status(company, result.provider_status or DeliveryStatus.ASSIGNED.value)
    set_tracking_number(order, result.tracking_number)
    order.delivery_assigned_at = now_utc()
    order.delivery_fee = delivery_fee
    order.delivery_response = (
        result.provider_response
        if isinstance(result.provider_response, (dict, list))
        else {"raw": result.provider_response}
    )
    apply_delivery_status(
        db,
        order,
        status,
        DeliveryEventSource.DISPATCH,
        payload={"tracking_number": result.tracking_number, "company_id": str(company.id)},
    )
    return status


def dispatch_order(
    db: Session,
    client: DeliveryProviderClientProtocol,
    company: DeliveryCompany,
    order_id: str | uuid.UUID,
    delivery_fee: float = 0,
) -> DispatchResult:
    """Validate, send and persist one order; the session is rolled back on any failure."""
    order = get_order(db, order_id)
    is_resend = bool(order.delivery_tracking_number or order.tracking_number)
    try:
        _check_preconditions(order, company, delivery_fee)
        with observe_timing("delivery_send_seconds"):
            result = client.send_order(order, company, delivery_fee)
        status = _apply_result(db, order, company, result, delivery_fee)
        db.commit()
    except DeliveryError:
        db.rollback()
        raise
    except PreflightError as err:
        db.rollback()
        raise _preflight_failure(err) from err
    except ProviderError as err:
        db.rollback()
        raise provider_failure(err) from err
    except StaleDataError as err:
        db.rollback()
        raise DeliveryError(
            status_code=409,
            code="order_conflict",
            message="Order was modified concurrently; retry the dispatch",
        ) from err
    except Exception as err:
        db.rollback()
        debug_id = uuid.uuid4().hex
        log_event(
            "order_dispatch_crashed",
            order_id=str(order_id),
            company_id=str(company.id),
            debug_id=debug_id,
            exc_info=True,
        )
        raise DeliveryError(
            status_code=500,
            code="internal_error",
            message="Failed to send order",
            details={"debugId": debug_id},
        ) from err

    db.refresh(order)
    log_event(
        "order_dispatched",
        order_id=str(order.id),
        company_id=str(company.id),
        tracking_number=result.tracking_number,
        delivery_status=status,
    )
    return DispatchResult(
        order=order,
        company=company,
        tracking_number=result.tracking_number,
        status=status,
        provider_status=result.provider_status,
        provider_response=order.delivery_response,
        is_resend=is_resend,
    )


def send_order(
    db: Session,
    client: DeliveryProviderClientProtocol,
    order_id: str | uuid.UUID,
    company_id: str | None = None,
    company_code: str | None = None,
    delivery_fee: float = 0,
) -> DispatchResult:
    company = resolve_company(db, company_id, company_code)
    try:
        result = dispatch_order(db, client, company, order_id, delivery_fee)
    except DeliveryError as err:
        metrics_store.increment("delivery_send_failed_total")
        log_event(
            f"order_dispatch_failed:{err.code}",
            order_id=str(order_id),
            company_id=str(company.id),
        )
        raise
    metrics_store.increment("delivery_send_total")
    return result


def batch_send_orders(
    db: Session,
    client: DeliveryProviderClientProtocol,
    order_ids: list[str],
    company_id: str | None = None,
    company_code: str | None = None,
    delivery_fee: float = 0,
    stop_on_error: bool = False,
) -> BatchSendSummary:
    company = resolve_company(db, company_id, company_code)
    summary = BatchSendSummary(company=company, total=len(order_ids))

    # Sequential on purpose: one carrier, one rate limit.
    for order_id in order_ids:
        try:
            result = dispatch_order(db, client, company, order_id, delivery_fee)
        except DeliveryError as err:
            metrics_store.increment("delivery_send_failed_total")
            summary.results.append(
                BatchEntry(
                    order_id=str(order_id),
                    success=False,
                    error=err.message,
                    code=err.code,
                    missing=err.details.get("missingFields") or err.details.get("missing"),
                )
            )
            if stop_on_error:
                break
            continue

        metrics_store.increment("delivery_send_total")
        summary.results.append(
            BatchEntry(
                order_id=str(order_id),
                success=True,
                tracking_number=result.tracking_number,
                status=result.status,
            )
        )

    log_event(
        f"batch_dispatch_completed:{summary.succeeded}/{summary.total}",
        company_id=str(company.id),
    )
    return summary


def batch_assign_orders(
    db: Session,
    order_ids: list[str],
    company_id: str,
    tracking_number: str | None = None,
    delivery_status: str | None = None,
    order_status: str | None = None,
) -> tuple[int, DeliveryCompany]:
    """Assign orders to a company without contacting it."""
    company = get_company(db, company_id)
    ids = [parsed for parsed in (parse_order_id(value) for value in order_ids) if parsed]
    if not ids:
        return 0, company

    orders = list(db.scalars(select(Order).where(Order.id.in_(ids))))
    assigned_at = now_utc()
    for order in orders:
        order.delivery_company_id = company.id
        order.delivery_assigned_at = assigned_at
        if tracking_number:
            set_tracking_number(order, tracking_number)
        if delivery_status:
            apply_delivery_status(
                db,
                order,
                delivery_status,
                DeliveryEventSource.BATCH_ASSIGN,
                payload={"company_id": str(company.id)},
            )
        if order_status:
            order.status = order_status

    try:
        db.commit()
    except StaleDataError as err:
        db.rollback()
        raise DeliveryError(
            status_code=409,
            code="order_conflict",
            message="Orders were modified concurrently; retry the assignment",
        ) from err

    log_event(f"batch_assigned:{len(orders)}", company_id=str(company.id))
    return len(orders), company


def get_delivery_status(
    db: Session,
    client: DeliveryProviderClientProtocol,
    order_id: str,
) -> dict[str, Any]:
    order = get_order(db, order_id)
    if order.delivery_company_id is None:
        raise DeliveryError(
            status_code=400,
            code="order_not_assigned",
            message="Order not assigned to delivery",
        )
    company = find_company(db, order.delivery_company_id)
    if company is None:
        raise company_not_found()

    try:
        provider = client.fetch_status(order, company)
    except PreflightError as err:
        raise _preflight_failure(err) from err
    except ProviderError as err:
        raise provider_failure(err) from err

    internal = map_status(company, provider.status)
    return {
        "success": True,
        "status": internal,
        "internal_status": internal,
        "provider_status": provider.status,
        "tracking_number": provider.tracking_number,
        "source": provider.source,
        "raw": provider.raw,
    }


def validate_mappings(db: Session, order_id: str, company_id: str) -> dict[str, Any]:
    order = get_order(db, order_id)
    company = get_company(db, company_id)
    check = validate_required_mappings(order, company)
    return {
        "is_valid": check.ok,
        "errors": [] if check.ok else ["Missing required fields"],
        "missing_fields": check.missing,
        "invalid_fields": [],
        "payload_preview": check.payload,
    }


def validate_all_mappings(
    db: Session,
    order_id: str,
    company_ids: list[str] | None = None,
    active_only: bool = True,
) -> dict[str, Any]:
    order = get_order(db, order_id)
    if company_ids:
        parsed = [value for value in (parse_order_id(item) for item in company_ids) if value]
        companies = list(
            db.scalars(
                select(DeliveryCompany)
                .where(DeliveryCompany.id.in_(parsed))
                .order_by(DeliveryCompany.name.asc())
            )
        )
    else:
        companies = list_companies(db, active_only=active_only)

    results = []
    for company in companies:
        check = validate_required_mappings(order, company)
        results.append(
            {
                "company_id": str(company.id),
                "company_name": company.name,
                "company_code": company.code or "",
                "is_active": company.is_active,
                "is_valid": check.ok,
                "missing_fields": check.missing,
                "payload_preview": check.payload,
            }
        )
    return {"all_valid": all(item["is_valid"] for item in results), "results": results}


def list_delivery_orders(db: Session, order_id: str | None = None, limit: int = 50) -> list[dict]:
    query = select(Order, DeliveryCompany).outerjoin(
        DeliveryCompany, Order.delivery_company_id == DeliveryCompany.id
    )
    if order_id:
        parsed = parse_order_id(order_id)
        if parsed is None:
            return []
        query = query.where(Order.id == parsed)
    rows = db.execute(
        query.order_by(Order.delivery_assigned_at.desc(), Order.created_at.desc()).limit(limit)
    ).all()

    items = []
    for order, company in rows:
        items.append(
            {
                "id": order.id,
                "order_number": order.order_number,
                "status": order.delivery_status or DeliveryStatus.ASSIGNED.value,
                "tracking_number": order.delivery_tracking_number or order.tracking_number,
                "delivery_company": (
                    {"id": company.id, "name": company.name, "code": company.code or ""}
                    if company is not None
                    else None
                ),
                "created_at": order.delivery_assigned_at or order.created_at,
                "customer_info": order.customer_info,
            }
        )
    return items


def proxy_external_list(
    db: Session,
    client: DeliveryProviderClientProtocol,
    url: str,
    headers: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    company_id: str | None = None,
    company_code: str | None = None,
) -> Any:
    target = (url or "").strip()
    parsed = urlparse(target)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise DeliveryError(
            status_code=400,
            code="invalid_url",
            message="Only http/https URLs are allowed",
        )

    company = None
    if company_id or company_code:
        company = (
            find_company(db, company_id) if company_id else find_company_by_code(db, company_code)
        )
        if company is None:
            raise company_not_found()

    try:
        return client.proxy_list(target, headers, params, company)
    except PreflightError as err:
        raise _preflight_failure(err) from err
    except ProviderError as err:
        details: dict[str, Any] = {"status": err.status_code or 502}
        if isinstance(err.response_body, dict):
            details["details"] = err.response_body
        raise DeliveryError(
            status_code=err.status_code or 502,
            code="proxy_failed",
            message=err.message or "Failed to fetch external list",
            details=details,
        ) from err
