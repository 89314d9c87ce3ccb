import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.delivery_company import DeliveryCompany
from app.models.order import Order
from app.observability import log_event
from app.schemas.delivery_company import (
    DeliveryCompanyCreate,
    DeliveryCompanyUpdate,
    FieldMappingsUpdate,
)
from app.services.errors import DeliveryError, company_not_found

DEFAULT_FREE_SHIPPING_THRESHOLD = 100.0
DEFAULT_FLAT_FEE = 5.0

_JSON_DOCUMENTS = (
    "api_configuration",
    "credentials",
    "field_mappings",
    "status_mapping",
    "area_mappings",
    "custom_fields",
)


def _parse_company_id(company_id: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(company_id, uuid.UUID):
        return company_id
    try:
        return uuid.UUID(str(company_id))
    except ValueError:
        return None


def find_company(db: Session, company_id: str | uuid.UUID) -> DeliveryCompany | None:
    parsed = _parse_company_id(company_id)
    if parsed is None:
        return None
    return db.get(DeliveryCompany, parsed)


def get_company(db: Session, company_id: str | uuid.UUID) -> DeliveryCompany:
    company = find_company(db, company_id)
    if company is None:
        raise company_not_found()
    return company


def find_company_by_code(db: Session, code: str) -> DeliveryCompany | None:
    return db.scalar(select(DeliveryCompany).where(DeliveryCompany.code == code))


def list_companies(db: Session, *, active_only: bool = False) -> list[DeliveryCompany]:
    query = select(DeliveryCompany)
    if active_only:
        query = query.where(DeliveryCompany.is_active.is_(True))
    return list(db.scalars(query.order_by(DeliveryCompany.name.asc())))


def _clear_other_defaults(db: Session, keep_id: uuid.UUID | None) -> None:
    statement = update(DeliveryCompany).where(DeliveryCompany.is_default.is_(True))
    if keep_id is not None:
        statement = statement.where(DeliveryCompany.id != keep_id)
    db.execute(statement.values(is_default=False))


def _document_values(payload: DeliveryCompanyCreate | DeliveryCompanyUpdate) -> dict[str, Any]:
    values = payload.model_dump(mode="json", exclude_unset=True)
    # Nested documents are stored in their normalized snake_case form, defaults included.
    for name in _JSON_DOCUMENTS:
        if name not in values:
            continue
        document = getattr(payload, name)
        if document is None:
            values.pop(name)
        elif isinstance(document, list):
            values[name] = [item.model_dump(mode="json") for item in document]
        elif hasattr(document, "model_dump"):
            values[name] = document.model_dump(mode="json")
    return values


def _commit(db: Session, company: DeliveryCompany) -> DeliveryCompany:
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise DeliveryError(
            status_code=409,
            code="company_conflict",
            message="Delivery company code or default flag conflicts with an existing company",
        ) from err
    db.refresh(company)
    return company


def create_company(db: Session, payload: DeliveryCompanyCreate) -> DeliveryCompany:
    values = payload.model_dump(mode="json")
    company = DeliveryCompany(id=uuid.uuid4(), **values)
    if company.is_default and company.is_active:
        _clear_other_defaults(db, keep_id=None)
    db.add(company)
    company = _commit(db, company)
    log_event("delivery_company_created", company_id=str(company.id))
    return company


def update_company(
    db: Session,
    company_id: str | uuid.UUID,
    payload: DeliveryCompanyUpdate,
) -> DeliveryCompany:
    company = get_company(db, company_id)
    values = _document_values(payload)
    for required in ("name", "is_active", "is_default", "provider_family"):
        if values.get(required, "") is None:
            values.pop(required)

    becomes_default = values.get("is_default", company.is_default)
    becomes_active = values.get("is_active", company.is_active)
    if becomes_default and becomes_active:
        _clear_other_defaults(db, keep_id=company.id)

    for name, value in values.items():
        setattr(company, name, value)
    company = _commit(db, company)
    log_event("delivery_company_updated", company_id=str(company.id))
    return company


def update_field_mappings(
    db: Session,
    company_id: str | uuid.UUID,
    payload: FieldMappingsUpdate,
) -> DeliveryCompany:
    company = get_company(db, company_id)
    company.field_mappings = [item.model_dump(mode="json") for item in payload.field_mappings]
    company.custom_fields = dict(payload.custom_fields)
    return _commit(db, company)


def delete_company(db: Session, company_id: str | uuid.UUID) -> None:
    company = get_company(db, company_id)
    in_use = db.scalar(select(Order.id).where(Order.delivery_company_id == company.id).limit(1))
    if in_use is not None:
        raise DeliveryError(
            status_code=409,
            code="company_in_use",
            message="Delivery company is assigned to orders and cannot be deleted",
        )
    db.delete(company)
    db.commit()
    log_event("delivery_company_deleted", company_id=str(company_id))


def calculate_delivery_fee(company: DeliveryCompany, total_amount: float) -> float:
    custom_fields = company.custom_fields or {}
    threshold = float(custom_fields.get("free_shipping_threshold", DEFAULT_FREE_SHIPPING_THRESHOLD))
    flat_fee = float(custom_fields.get("flat_fee", DEFAULT_FLAT_FEE))
    return 0.0 if total_amount >= threshold else flat_fee
