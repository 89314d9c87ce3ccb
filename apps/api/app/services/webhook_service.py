import hmac
from dataclasses import dataclass

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.auth.jwt import bearer_token
from app.config import settings
from app.integrations.notifications import OrderUpdatePublisher
from app.models.delivery_company import DeliveryCompany
from app.models.delivery_event import DeliveryEventSource
from app.models.order import Order
from app.observability import log_event, metrics_store
from app.schemas.delivery import WebhookPayload
from app.services.company_service import find_company, find_company_by_code
from app.services.errors import DeliveryError, order_not_found
from app.services.orders_service import (
    append_delivery_event,
    apply_delivery_status,
    find_order,
    find_order_by_number,
    find_order_by_tracking_number,
    set_tracking_number,
)
from app.services.state_machine import ensure_valid_transition
from app.services.status_mapper import DEFAULT_STATUS, lookup_status


@dataclass
class WebhookOutcome:
    order: Order
    status: str
    changed: bool


def verify_webhook_token(authorization: str | None) -> None:
    expected = settings.webhook_token.strip()
    if not expected:
        raise DeliveryError(
            status_code=500,
            code="webhook_not_configured",
            message="Webhook token is not configured",
        )

    provided = bearer_token(authorization)
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise DeliveryError(status_code=401, code="invalid_token", message="Invalid webhook token")


def _locate_order(db: Session, payload: WebhookPayload) -> Order:
    order = None
    if payload.order_id:
        order = find_order(db, payload.order_id)
    if order is None and payload.order_number:
        order = find_order_by_number(db, payload.order_number)
    if order is None and payload.tracking_number:
        order = find_order_by_tracking_number(db, payload.tracking_number)
    if order is None:
        raise order_not_found()
    return order


def _locate_company(db: Session, payload: WebhookPayload, order: Order) -> DeliveryCompany | None:
    if payload.company_id:
        company = find_company(db, payload.company_id)
        if company is not None:
            return company
    if payload.company_code:
        company = find_company_by_code(db, payload.company_code)
        if company is not None:
            return company
    if order.delivery_company_id is not None:
        return find_company(db, order.delivery_company_id)
    return None


def ingest_status_update(
    db: Session,
    payload: WebhookPayload,
    publisher: OrderUpdatePublisher | None = None,
) -> WebhookOutcome:
    """Apply a carrier status push to the matching order.

    Repeating the same push leaves the order as it was.
    """
    order = _locate_order(db, payload)
    company = _locate_company(db, payload, order)
    mapped = lookup_status(company, payload.status)
    if mapped is None:
        # Unknown carrier statuses never move the order backwards.
        status = order.delivery_status or DEFAULT_STATUS
    else:
        status = mapped
        ensure_valid_transition(order.delivery_status, status)

    if payload.tracking_number:
        set_tracking_number(order, payload.tracking_number)
    if payload.order_status:
        order.status = payload.order_status
    if payload.notes is not None:
        order.delivery_notes = payload.notes
    if payload.estimated_date is not None:
        order.delivery_estimated_date = payload.estimated_date

    changed = apply_delivery_status(
        db,
        order,
        status,
        DeliveryEventSource.WEBHOOK,
        occurred_at=payload.occurred_at,
        actual_date=payload.actual_date,
        payload={"provider_status": payload.status},
    )
    if mapped is None and not changed:
        append_delivery_event(
            db,
            order,
            status,
            DeliveryEventSource.WEBHOOK,
            f"Unmapped provider status: {payload.status}",
            {"provider_status": payload.status, "unmapped": True},
        )
        metrics_store.increment("delivery_webhook_unmapped_total")
    try:
        db.commit()
    except StaleDataError as err:
        db.rollback()
        raise DeliveryError(
            status_code=409,
            code="order_conflict",
            message="Order was modified concurrently; retry the update",
        ) from err
    db.refresh(order)

    metrics_store.increment("delivery_webhook_total")
    log_event(
        "webhook_applied",
        order_id=str(order.id),
        company_id=str(company.id) if company is not None else None,
        tracking_number=order.delivery_tracking_number,
        delivery_status=status,
    )

    if publisher is not None:
        try:
            publisher.publish_order_update(
                {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "delivery_status": order.delivery_status,
                    "tracking_number": order.delivery_tracking_number,
                    "status": order.status,
                }
            )
        except Exception:
            metrics_store.increment("order_update_publish_failed_total")
            log_event(
                "order_update_publish_failed",
                order_id=str(order.id),
                exc_info=True,
            )

    return WebhookOutcome(order=order, status=status, changed=changed)
