from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, require_backoffice
from app.db.session import get_db
from app.integrations.delivery_client import (
    DeliveryProviderClientProtocol,
    get_delivery_provider_client,
)
from app.routers.error_translation import translate_delivery_error
from app.schemas.delivery_company import (
    ConnectionTestResponse,
    DeliveryCompanyCreate,
    DeliveryCompanyResponse,
    DeliveryCompanyUpdate,
    FeeQuoteRequest,
    FeeQuoteResponse,
    FieldMappingsUpdate,
)
from app.services.company_service import (
    calculate_delivery_fee,
    create_company,
    delete_company,
    get_company,
    list_companies,
    update_company,
    update_field_mappings,
)
from app.services.errors import DeliveryError

router = APIRouter(prefix="/delivery/companies", tags=["delivery-companies"])


@router.get("", response_model=list[DeliveryCompanyResponse], summary="List delivery companies")
def list_companies_endpoint(
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> list[DeliveryCompanyResponse]:
    return [DeliveryCompanyResponse.model_validate(company) for company in list_companies(db)]


@router.get(
    "/active",
    response_model=list[DeliveryCompanyResponse],
    summary="List active delivery companies",
)
def list_active_companies_endpoint(
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> list[DeliveryCompanyResponse]:
    return [
        DeliveryCompanyResponse.model_validate(company)
        for company in list_companies(db, active_only=True)
    ]


@router.post(
    "",
    response_model=DeliveryCompanyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create delivery company",
)
def create_company_endpoint(
    payload: DeliveryCompanyCreate,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryCompanyResponse:
    try:
        return DeliveryCompanyResponse.model_validate(create_company(db, payload))
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.get(
    "/{company_id}", response_model=DeliveryCompanyResponse, summary="Get delivery company"
)
def get_company_endpoint(
    company_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryCompanyResponse:
    try:
        return DeliveryCompanyResponse.model_validate(get_company(db, company_id))
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.patch(
    "/{company_id}", response_model=DeliveryCompanyResponse, summary="Update delivery company"
)
def update_company_endpoint(
    company_id: str,
    payload: DeliveryCompanyUpdate,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryCompanyResponse:
    try:
        return DeliveryCompanyResponse.model_validate(update_company(db, company_id, payload))
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.delete(
    "/{company_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete delivery company",
)
def delete_company_endpoint(
    company_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> Response:
    try:
        delete_company(db, company_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/{company_id}/field-mappings",
    response_model=DeliveryCompanyResponse,
    summary="Replace field mappings and custom fields",
)
def update_field_mappings_endpoint(
    company_id: str,
    payload: FieldMappingsUpdate,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> DeliveryCompanyResponse:
    try:
        return DeliveryCompanyResponse.model_validate(
            update_field_mappings(db, company_id, payload)
        )
    except DeliveryError as err:
        raise translate_delivery_error(err) from err


@router.post(
    "/{company_id}/calculate-fee",
    response_model=FeeQuoteResponse,
    summary="Quote a delivery fee",
)
def calculate_fee_endpoint(
    company_id: str,
    payload: FeeQuoteRequest,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_backoffice),
) -> FeeQuoteResponse:
    try:
        company = get_company(db, company_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err
    return FeeQuoteResponse(fee=calculate_delivery_fee(company, payload.total_amount))


@router.post(
    "/{company_id}/test-connection",
    response_model=ConnectionTestResponse,
    summary="Probe the company endpoint",
)
def test_connection_endpoint(
    company_id: str,
    db: Session = Depends(get_db),
    client: DeliveryProviderClientProtocol = Depends(get_delivery_provider_client),
    _auth: AuthContext = Depends(require_backoffice),
) -> ConnectionTestResponse:
    try:
        company = get_company(db, company_id)
    except DeliveryError as err:
        raise translate_delivery_error(err) from err

    result = client.test_connection(company)
    return ConnectionTestResponse(
        success=result.ok,
        message=result.message or ("Connection successful" if result.ok else "Connection failed"),
        status=result.status,
    )
