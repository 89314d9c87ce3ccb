import threading
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.config import settings
from app.db.base import Base
from app.db.session import engine as app_engine
from app.db.session import get_db
from app.integrations.notifications import order_update_broker
from app.main import app
from app.models.delivery_company import DeliveryCompany
from app.models.order import Order
from app.observability import metrics_store

WEBHOOK_TOKEN = "carrier-webhook-token"


@pytest.fixture(scope="session", autouse=True)
def setup_test_schema():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield
    Base.metadata.drop_all(bind=app_engine)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture(autouse=True)
def reset_order_update_broker():
    order_update_broker.reset()
    yield
    order_update_broker.reset()


@pytest.fixture
def db_session():
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(db_session):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db_session_lock = threading.Lock()

    def override_get_db():
        if db_session_lock.acquire(blocking=False):
            try:
                yield db_session
            finally:
                db_session_lock.release()
            return

        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(scope="session", autouse=True)
def enable_test_auth_bypass():
    original = settings.enable_test_auth_bypass
    settings.enable_test_auth_bypass = True
    yield
    settings.enable_test_auth_bypass = original


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original = settings.testing
    settings.testing = True
    yield
    settings.testing = original


@pytest.fixture
def webhook_token(monkeypatch):
    monkeypatch.setattr(settings, "webhook_token", WEBHOOK_TOKEN)
    return WEBHOOK_TOKEN


@pytest.fixture
def make_company(db_session):
    def _make(**overrides) -> DeliveryCompany:
        values = {
            "id": uuid.uuid4(),
            "code": f"carrier-{uuid.uuid4().hex[:8]}",
            "name": "Fast Couriers",
            "is_active": True,
            "is_default": False,
            "provider_family": "generic",
            "api_configuration": {
                "url": "https://carrier.example.com/api/shipments",
                "auth": {"method": "none"},
                "transport": {"format": "rest", "http_method": "POST"},
            },
            "credentials": {},
            "field_mappings": [
                {
                    "company_field": "reference",
                    "internal_field": "order_number",
                    "required": True,
                },
                {
                    "company_field": "recipient.name",
                    "internal_field": "customer_info.name",
                    "required": True,
                },
                {
                    "company_field": "recipient.city",
                    "internal_field": "shipping_address.city",
                    "required": False,
                },
            ],
            "status_mapping": [],
            "area_mappings": [],
            "custom_fields": {},
        }
        values.update(overrides)
        company = DeliveryCompany(**values)
        db_session.add(company)
        db_session.commit()
        db_session.refresh(company)
        return company

    return _make


@pytest.fixture
def make_order(db_session):
    def _make(**overrides) -> Order:
        values = {
            "id": uuid.uuid4(),
            "order_number": f"ORD-{uuid.uuid4().hex[:8].upper()}",
            "status": "processing",
            "customer_info": {"name": "Dana Levi", "phone": "+972500000000"},
            "shipping_address": {"city": "Haifa", "street": "Herzl 1"},
            "items": [{"sku": "TEA-1", "quantity": 2}],
            "total_amount": 80.0,
        }
        values.update(overrides)
        order = Order(**values)
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


class ProviderResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class _ClientStub:
    def __init__(self, provider: "ProviderStub"):
        self._provider = provider

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def request(self, method, url, params=None, json=None, headers=None, auth=None):
        self._provider.calls.append(
            {
                "method": method,
                "url": url,
                "params": params,
                "json": json,
                "headers": headers,
                "auth": auth,
            }
        )
        value = self._provider.responses.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class ProviderStub:
    def __init__(self):
        self.responses: list = []
        self.calls: list[dict] = []
        self.timeouts: list[float] = []

    def reply(self, status_code: int = 200, payload=None, text: str | None = None) -> None:
        self.responses.append(ProviderResponse(status_code, payload, text))

    def fail(self, error: Exception) -> None:
        self.responses.append(error)

    def client_factory(self, timeout):
        self.timeouts.append(timeout)
        return _ClientStub(self)


@pytest.fixture
def provider(monkeypatch):
    stub = ProviderStub()
    monkeypatch.setattr("app.integrations.delivery_client.httpx.Client", stub.client_factory)
    return stub
