import uuid


def _company_body(**overrides):
    body = {
        "name": "Fast Couriers",
        "code": "fast",
        "apiConfiguration": {
            "url": "https://carrier.example.com/api",
            "authMethod": "apiKey",
            "apiKey": "k-123",
            "format": "rest",
        },
        "fieldMappings": [
            {"companyField": "reference", "internalField": "order_number", "required": True}
        ],
        "statusMapping": [
            {"companyStatus": "DLV", "internalStatus": "delivered"},
            {"companyStatus": "", "internalStatus": "in_transit"},
        ],
    }
    body.update(overrides)
    return body


def test_create_company_normalizes_documents(client):
    response = client.post("/delivery/companies", json=_company_body())

    assert response.status_code == 201
    body = response.json()
    assert body["code"] == "fast"
    assert body["apiConfiguration"]["auth"] == {
        "method": "apiKey",
        "api_key": "k-123",
        "header": None,
    }
    assert body["apiConfiguration"]["transport"]["format"] == "rest"
    assert body["statusMapping"] == [{"company_status": "DLV", "internal_status": "delivered"}]


def test_create_company_rejects_unknown_internal_status(client):
    body = _company_body(statusMapping=[{"companyStatus": "X", "internalStatus": "lost"}])

    response = client.post("/delivery/companies", json=body)

    assert response.status_code == 422


def test_create_company_rejects_non_http_url(client):
    body = _company_body(apiConfiguration={"url": "ftp://carrier.example.com"})

    response = client.post("/delivery/companies", json=body)

    assert response.status_code == 422


def test_duplicate_code_is_conflict(client):
    assert client.post("/delivery/companies", json=_company_body()).status_code == 201

    response = client.post("/delivery/companies", json=_company_body(name="Other"))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "company_conflict"


def test_single_default_company(client):
    first = client.post("/delivery/companies", json=_company_body(isDefault=True)).json()
    second = client.post(
        "/delivery/companies", json=_company_body(name="Second", code="second", isDefault=True)
    ).json()

    listed = {item["id"]: item["isDefault"] for item in client.get("/delivery/companies").json()}

    assert listed == {first["id"]: False, second["id"]: True}


def test_active_listing_and_patch(client):
    created = client.post("/delivery/companies", json=_company_body()).json()

    patched = client.patch(f"/delivery/companies/{created['id']}", json={"isActive": False})
    active = client.get("/delivery/companies/active")

    assert patched.status_code == 200
    assert patched.json()["isActive"] is False
    assert patched.json()["name"] == "Fast Couriers"
    assert active.json() == []


def test_get_unknown_company_is_404(client):
    response = client.get(f"/delivery/companies/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "company_not_found"


def test_replace_field_mappings(client):
    created = client.post("/delivery/companies", json=_company_body()).json()

    response = client.put(
        f"/delivery/companies/{created['id']}/field-mappings",
        json={
            "fieldMappings": [
                {
                    "companyField": "to.city",
                    "internalField": "shippingAddress.city",
                    "defaultValue": "Tel Aviv",
                }
            ],
            "customFields": {"flat_fee": 15},
        },
    )

    assert response.status_code == 200
    assert response.json()["fieldMappings"] == [
        {
            "company_field": "to.city",
            "internal_field": "shippingAddress.city",
            "required": False,
            "default_value": "Tel Aviv",
        }
    ]
    assert response.json()["customFields"] == {"flat_fee": 15}


def test_calculate_fee_uses_custom_fields(client, make_company):
    company = make_company(custom_fields={"flat_fee": 20, "free_shipping_threshold": 150})

    paid = client.post(f"/delivery/companies/{company.id}/calculate-fee", json={"totalAmount": 100})
    free = client.post(f"/delivery/companies/{company.id}/calculate-fee", json={"totalAmount": 150})

    assert paid.json() == {"fee": 20.0}
    assert free.json() == {"fee": 0.0}


def test_connection_probe(client, make_company, provider):
    company = make_company()
    provider.reply(200, {"ok": True})
    provider.reply(401, {"message": "bad key"})

    ok = client.post(f"/delivery/companies/{company.id}/test-connection")
    rejected = client.post(f"/delivery/companies/{company.id}/test-connection")

    assert ok.json() == {"success": True, "message": "Connection successful", "status": 200}
    assert rejected.json() == {"success": False, "message": "bad key", "status": 401}
    assert provider.calls[0]["method"] == "GET"


def test_delete_company(client, make_company, make_order):
    idle = make_company()
    busy = make_company()
    make_order(delivery_company_id=busy.id)

    deleted = client.delete(f"/delivery/companies/{idle.id}")
    blocked = client.delete(f"/delivery/companies/{busy.id}")

    assert deleted.status_code == 204
    assert client.get(f"/delivery/companies/{idle.id}").status_code == 404
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["code"] == "company_in_use"
