import uuid

import pytest
from sqlalchemy import update

from app.db.session import engine as app_engine
from app.integrations.delivery_client import DeliveryProviderClient, ProviderResult
from app.models.delivery_event import DeliveryEventSource
from app.models.order import Order
from app.services.dispatch_service import (
    batch_assign_orders,
    batch_send_orders,
    get_delivery_status,
    list_delivery_orders,
    proxy_external_list,
    resolve_company,
    send_order,
    validate_all_mappings,
    validate_mappings,
)
from app.services.errors import DeliveryError
from app.services.orders_service import list_delivery_events


@pytest.fixture
def client():
    return DeliveryProviderClient(default_timeout_ms=15000)


def test_send_order_persists_provider_result(
    db_session, make_company, make_order, provider, client
):
    company = make_company(
        status_mapping=[{"company_status": "Created", "internal_status": "assigned"}]
    )
    order = make_order()
    provider.reply(201, {"tracking_number": "TRK-1", "status": "Created"})

    result = send_order(
        db_session, client, str(order.id), company_id=str(company.id), delivery_fee=-5
    )

    assert result.status == "assigned"
    assert result.tracking_number == "TRK-1"
    assert result.is_resend is False
    db_session.refresh(order)
    assert order.delivery_company_id == company.id
    assert order.delivery_status == "assigned"
    assert order.delivery_tracking_number == "TRK-1"
    assert order.tracking_number == "TRK-1"
    assert order.delivery_fee == -5
    assert order.delivery_assigned_at is not None
    assert order.delivery_response == {"tracking_number": "TRK-1", "status": "Created"}
    assert order.version == 2

    events = list_delivery_events(db_session, order.id)
    assert [(e.type, e.source) for e in events] == [("assigned", DeliveryEventSource.DISPATCH)]


def test_send_order_unknown_order_is_not_found_and_sends_nothing(
    db_session, make_company, provider, client
):
    company = make_company()

    with pytest.raises(DeliveryError) as exc_info:
        send_order(db_session, client, str(uuid.uuid4()), company_id=str(company.id))

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Order not found"
    assert provider.calls == []


def test_send_order_rejects_incomplete_configuration(db_session, make_company, make_order, client):
    company = make_company(api_configuration={})
    order = make_order()

    with pytest.raises(DeliveryError) as exc_info:
        send_order(db_session, client, order.id, company_id=str(company.id))

    err = exc_info.value
    assert err.status_code == 400
    assert err.code == "CONFIG_INVALID"
    assert err.details == {"issues": ["Missing API base URL"], "mode": "rest", "url": ""}


def test_send_order_reports_missing_mapped_fields(
    db_session, make_company, make_order, provider, client
):
    company = make_company()
    order = make_order(customer_info={})

    with pytest.raises(DeliveryError) as exc_info:
        send_order(db_session, client, order.id, company_id=str(company.id))

    err = exc_info.value
    assert err.code == "MAPPING_MISSING"
    assert err.to_detail() == {
        "message": "Missing required mapped fields",
        "code": "MAPPING_MISSING",
        "missingFields": ["customer_info.name"],
        "payloadPreview": {"reference": order.order_number, "recipient": {"city": "Haifa"}},
    }
    assert provider.calls == []


@pytest.mark.parametrize(
    ("status_code", "expected_status", "expected_code"),
    [(422, 400, "provider_rejected"), (502, 502, "provider_unavailable")],
)
def test_provider_failures_leave_order_untouched(
    db_session,
    make_company,
    make_order,
    provider,
    client,
    status_code,
    expected_status,
    expected_code,
):
    company = make_company()
    order = make_order()
    provider.reply(status_code, {"message": "nope"})

    with pytest.raises(DeliveryError) as exc_info:
        send_order(db_session, client, order.id, company_id=str(company.id))

    assert exc_info.value.status_code == expected_status
    assert exc_info.value.code == expected_code
    assert exc_info.value.details["providerStatus"] == status_code
    db_session.refresh(order)
    assert order.delivery_status is None
    assert order.delivery_company_id is None
    assert order.version == 1


def test_concurrent_modification_is_a_conflict(db_session, make_company, make_order):
    company = make_company()
    order = make_order()

    class _RacingClient:
        def send_order(self, order_arg, company_arg, delivery_fee=None):
            with app_engine.begin() as connection:
                connection.execute(
                    update(Order)
                    .where(Order.id == order_arg.id)
                    .values(status="cancelled", version=Order.version + 1)
                )
            return ProviderResult(
                tracking_number="TRK-X", provider_response={}, provider_status=None
            )

    with pytest.raises(DeliveryError) as exc_info:
        send_order(db_session, _RacingClient(), order.id, company_id=str(company.id))

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "order_conflict"
    db_session.refresh(order)
    assert order.status == "cancelled"
    assert order.delivery_tracking_number is None


def test_resolve_company_prefers_default_then_first_active_by_name(db_session, make_company):
    make_company(name="Zeta", is_active=True)
    alpha = make_company(name="Alpha", is_active=True)
    make_company(name="Aardvark", is_active=False)

    assert resolve_company(db_session).id == alpha.id

    default = make_company(name="Mid", is_default=True)
    assert resolve_company(db_session).id == default.id
    assert resolve_company(db_session, company_code=alpha.code).id == alpha.id


def test_resolve_company_fails_when_nothing_matches(db_session):
    with pytest.raises(DeliveryError) as exc_info:
        resolve_company(db_session, company_id=str(uuid.uuid4()), company_code="nope")
    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "company_not_found"


def test_unresolved_explicit_company_falls_back_to_default(db_session, make_company):
    make_company(name="Alpha")
    default = make_company(name="Mid", is_default=True)

    assert resolve_company(db_session, company_id=str(uuid.uuid4())).id == default.id
    assert resolve_company(db_session, company_id="not-a-uuid").id == default.id
    assert resolve_company(db_session, company_code="missing").id == default.id


def test_unresolved_company_id_tries_code_next(db_session, make_company):
    make_company(name="Alpha", is_default=True)
    coded = make_company(name="Zeta")

    assert resolve_company(db_session, str(uuid.uuid4()), coded.code).id == coded.id


def test_batch_send_reports_per_order_outcome(
    db_session, make_company, make_order, provider, client
):
    company = make_company()
    order = make_order()
    provider.reply(200, {"tracking_number": "TRK-B1"})

    summary = batch_send_orders(
        db_session, client, [str(order.id), str(uuid.uuid4())], company_id=str(company.id)
    )

    assert summary.total == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.results[0].tracking_number == "TRK-B1"
    assert summary.results[1].success is False
    assert summary.results[1].error == "Order not found"
    assert summary.results[1].code == "order_not_found"


def test_batch_send_stop_on_error_aborts(
    db_session, make_company, make_order, provider, client
):
    company = make_company()
    broken = make_order(customer_info={})
    untouched = make_order()

    summary = batch_send_orders(
        db_session,
        client,
        [str(broken.id), str(untouched.id)],
        company_id=str(company.id),
        stop_on_error=True,
    )

    assert summary.total == 2
    assert summary.failed == 1
    assert len(summary.results) == 1
    assert summary.results[0].missing == ["customer_info.name"]
    assert provider.calls == []


def test_batch_assign_sets_company_tracking_and_delivered_date(
    db_session, make_company, make_order
):
    company = make_company()
    first = make_order()
    second = make_order()

    modified, _ = batch_assign_orders(
        db_session,
        [str(first.id), str(second.id), "not-an-id"],
        str(company.id),
        tracking_number="MANUAL-1",
        delivery_status="delivered",
        order_status="completed",
    )

    assert modified == 2
    for order in (first, second):
        db_session.refresh(order)
        assert order.delivery_company_id == company.id
        assert order.delivery_tracking_number == "MANUAL-1"
        assert order.tracking_number == "MANUAL-1"
        assert order.delivery_status == "delivered"
        assert order.delivery_actual_date is not None
        assert order.status == "completed"
        assert order.version == 2
    events = list_delivery_events(db_session, first.id)
    assert [e.source for e in events] == [DeliveryEventSource.BATCH_ASSIGN]


def test_batch_assign_unknown_company(db_session, make_order):
    order = make_order()

    with pytest.raises(DeliveryError) as exc_info:
        batch_assign_orders(db_session, [str(order.id)], str(uuid.uuid4()))

    assert exc_info.value.status_code == 404


def test_delivery_status_requires_assignment(db_session, make_order, client):
    order = make_order()

    with pytest.raises(DeliveryError) as exc_info:
        get_delivery_status(db_session, client, str(order.id))

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "order_not_assigned"


def test_delivery_status_maps_provider_value(
    db_session, make_company, make_order, provider, client
):
    company = make_company(
        api_configuration={
            "url": "https://carrier.example.com",
            "transport": {
                "format": "rest",
                "status_url": "https://carrier.example.com/t/{tracking_number}",
            },
        },
        status_mapping=[{"company_status": "ENR", "internal_status": "in_transit"}],
    )
    order = make_order(delivery_company_id=company.id, delivery_tracking_number="TRK-5")
    provider.reply(200, {"status": "ENR"})

    status = get_delivery_status(db_session, client, str(order.id))

    assert status["status"] == "in_transit"
    assert status["provider_status"] == "ENR"
    assert status["source"] == "provider"


def test_validate_mappings_per_company(db_session, make_company, make_order):
    complete = make_company(name="Complete")
    strict = make_company(
        name="Strict",
        field_mappings=[
            {"company_field": "phone", "internal_field": "customer_info.mobile", "required": True}
        ],
    )
    order = make_order()

    single = validate_mappings(db_session, str(order.id), str(strict.id))
    assert single["is_valid"] is False
    assert single["missing_fields"] == ["customer_info.mobile"]

    everything = validate_all_mappings(db_session, str(order.id))
    assert everything["all_valid"] is False
    assert [(r["company_name"], r["is_valid"]) for r in everything["results"]] == [
        ("Complete", True),
        ("Strict", False),
    ]

    only_complete = validate_all_mappings(db_session, str(order.id), company_ids=[str(complete.id)])
    assert only_complete["all_valid"] is True


def test_list_delivery_orders_includes_company(db_session, make_company, make_order):
    company = make_company(name="Listed")
    assigned = make_order(delivery_company_id=company.id, delivery_status="in_transit")
    make_order()

    items = list_delivery_orders(db_session, order_id=str(assigned.id))

    assert len(items) == 1
    assert items[0]["status"] == "in_transit"
    assert items[0]["delivery_company"]["name"] == "Listed"


@pytest.mark.parametrize(
    "url", ["file:///etc/passwd", "ftp://carrier.example.com/list", "not a url"]
)
def test_proxy_rejects_non_http_urls(db_session, client, url):
    with pytest.raises(DeliveryError) as exc_info:
        proxy_external_list(db_session, client, url)

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "invalid_url"


def test_proxy_surfaces_upstream_status(db_session, provider, client):
    provider.reply(404, {"message": "no such list"})

    with pytest.raises(DeliveryError) as exc_info:
        proxy_external_list(db_session, client, "https://carrier.example.com/list")

    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "proxy_failed"
    assert exc_info.value.details["details"] == {"message": "no such list"}
