import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.models.delivery_event import DeliveryEvent, DeliveryEventSource
from app.models.order import Order
from app.services.errors import order_not_found
from app.services.state_machine import DeliveryStatus, current_status


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_order_id(order_id: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        return None


def find_order(db: Session, order_id: str | uuid.UUID) -> Order | None:
    parsed = parse_order_id(order_id)
    if parsed is None:
        return None
    return db.get(Order, parsed)


def get_order(db: Session, order_id: str | uuid.UUID) -> Order:
    order = find_order(db, order_id)
    if order is None:
        raise order_not_found()
    return order


def find_order_by_number(db: Session, order_number: str) -> Order | None:
    return db.scalar(select(Order).where(Order.order_number == order_number))


def find_order_by_tracking_number(db: Session, tracking_number: str) -> Order | None:
    return db.scalar(
        select(Order)
        .where(
            or_(
                Order.delivery_tracking_number == tracking_number,
                Order.tracking_number == tracking_number,
            )
        )
        .limit(1)
    )


def set_tracking_number(order: Order, tracking_number: str | None) -> None:
    order.delivery_tracking_number = tracking_number
    order.tracking_number = tracking_number


def append_delivery_event(
    db: Session,
    order: Order,
    status: str,
    source: DeliveryEventSource,
    message: str,
    payload: dict | None = None,
) -> None:
    db.add(
        DeliveryEvent(
            order_id=order.id,
            company_id=order.delivery_company_id,
            type=status,
            source=source,
            message=message,
            payload=payload or {},
            created_at=now_utc(),
        )
    )


def apply_delivery_status(
    db: Session,
    order: Order,
    status: str,
    source: DeliveryEventSource,
    *,
    occurred_at: datetime | None = None,
    actual_date: datetime | None = None,
    payload: dict | None = None,
) -> bool:
    """Set the delivery status, keeping the delivered/actual-date invariant.

    Returns True when the status changed; an event is appended only then.
    """
    previous = current_status(order.delivery_status)
    changed = previous != status

    order.delivery_status = status
    if actual_date is not None:
        order.delivery_actual_date = actual_date
    if status == DeliveryStatus.DELIVERED.value and order.delivery_actual_date is None:
        order.delivery_actual_date = occurred_at or now_utc()

    if occurred_at is not None:
        order.delivery_status_updated = occurred_at
    elif changed or order.delivery_status_updated is None:
        order.delivery_status_updated = now_utc()

    if changed:
        append_delivery_event(
            db,
            order,
            status,
            source,
            f"Delivery status changed: {previous} -> {status}",
            {"from_status": previous, "to_status": status, **(payload or {})},
        )
    return changed


def list_delivery_events(db: Session, order_id: str | uuid.UUID) -> list[DeliveryEvent]:
    order = get_order(db, order_id)
    events = db.scalars(
        select(DeliveryEvent)
        .where(DeliveryEvent.order_id == order.id)
        .order_by(DeliveryEvent.created_at.asc())
    )
    return list(events)
