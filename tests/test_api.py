from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

from supplymesh.main import app, create_app, graphql_schema
from supplymesh.settings import Settings, load_settings

settings = load_settings()

client = TestClient(app)


def new_vendor_id() -> str:
    return f"ven-api-{uuid4().hex[:8]}"


def order_payload(vendor_id: str, **overrides) -> dict:
    payload = {
        "vendor_id": vendor_id,
        "items": [{"sku": "M8-BOLT-20", "quantity": 12}],
        "partial_allowed": False,
        "delivery_location": "Pretoria",
        "delivery_address": "12 Oak St",
        "required_delivery_date": (datetime.now(timezone.utc) + timedelta(days=3)).isoformat(),
    }
    payload.update(overrides)
    return payload


def place_order(vendor_id: str, **overrides) -> dict:
    response = client.post("/orders", json=order_payload(vendor_id, **overrides))
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health_returns_ok(self):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_request_id_is_echoed(self):
        response = client.get("/health", headers={settings.request_id_header: "req-123"})
        assert response.headers[settings.request_id_header] == "req-123"

    def test_request_id_is_generated(self):
        response = client.get("/health")
        assert response.headers[settings.request_id_header]

    def test_sku_catalog(self):
        response = client.get("/skus")
        assert response.status_code == 200
        codes = [sku["code"] for sku in response.json()]
        assert "M8-BOLT-20" in codes


class TestOrders:
    def test_place_and_fetch_order(self):
        order = place_order(new_vendor_id())

        response = client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        data = response.json()
        assert data["order_state"] == "PENDING"
        assert data["delivery_state"] == "ON_TRACK"
        assert data["at_risk"] is False
        assert data["order_number"].startswith("ORD-")

    def test_versioned_prefix(self):
        order = place_order(new_vendor_id())
        response = client.get(f"/v1/orders/{order['id']}")
        assert response.status_code == 200

    def test_invalid_sku(self):
        payload = order_payload(new_vendor_id(), items=[{"sku": "BOGUS-1", "quantity": 1}])
        response = client.post("/orders", json=payload)
        assert response.status_code == 400
        assert response.json()["detail"]["invalid_skus"] == ["BOGUS-1"]

    def test_schema_validation(self):
        payload = order_payload(new_vendor_id(), items=[{"sku": "M8-BOLT-20", "quantity": 0}])
        response = client.post("/orders", json=payload)
        assert response.status_code == 422

    def test_order_not_found(self):
        response = client.get("/orders/does-not-exist")
        assert response.status_code == 404

    def test_list_orders_for_vendor(self):
        vendor_id = new_vendor_id()
        place_order(vendor_id)
        place_order(vendor_id)
        response = client.get("/orders", params={"vendor_id": vendor_id})
        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_no_suppliers_marks_at_risk(self):
        order = place_order(new_vendor_id(), delivery_location="Durban")
        assert order["delivery_state"] == "AT_RISK"
        events = client.get(f"/orders/{order['id']}/events").json()
        assert [event["type"] for event in events] == ["no_suppliers_found"]


class TestSupplierFlow:
    def test_accept_is_exclusive(self):
        order = place_order(new_vendor_id())

        visibility = client.get(f"/orders/{order['id']}/visibility").json()
        assert {row["supplier_id"] for row in visibility} == {"sup-gauteng-hardware", "sup-joburg-fasteners"}

        first = client.post(f"/orders/{order['id']}/accept", json={"supplier_id": "sup-gauteng-hardware"})
        assert first.status_code == 200
        assert first.json()["order_state"] == "ACCEPTED"

        second = client.post(f"/orders/{order['id']}/accept", json={"supplier_id": "sup-joburg-fasteners"})
        assert second.status_code == 409
        assert second.json()["detail"] == "Order already accepted by another supplier"

        active = client.get("/suppliers/sup-gauteng-hardware/orders/active").json()
        assert order["id"] in [item["id"] for item in active]

    def test_new_requests_for_supplier(self):
        order = place_order(new_vendor_id())
        requests = client.get("/suppliers/sup-joburg-fasteners/requests").json()
        assert order["id"] in [item["id"] for item in requests]

        client.post(f"/orders/{order['id']}/decline", json={"supplier_id": "sup-joburg-fasteners"})
        requests = client.get("/suppliers/sup-joburg-fasteners/requests").json()
        assert order["id"] not in [item["id"] for item in requests]

    def test_delivery_status_and_rating(self):
        vendor_id = new_vendor_id()
        order = place_order(vendor_id)
        client.post(f"/orders/{order['id']}/accept", json={"supplier_id": "sup-gauteng-hardware"})

        in_transit = client.post(f"/orders/{order['id']}/delivery-status", json={"status": "IN_TRANSIT"})
        assert in_transit.json()["state_changed"] is False

        delivered = client.post(f"/orders/{order['id']}/delivery-status", json={"status": "DELIVERED"})
        assert delivered.status_code == 200
        assert delivered.json()["order"]["actual_delivered_at"] is not None

        failed = client.post(f"/orders/{order['id']}/delivery-status", json={"status": "FAILED"})
        assert failed.status_code == 409

        rating = client.post("/ratings", json={"order_id": order["id"], "vendor_id": vendor_id, "score": 5})
        assert rating.status_code == 200
        duplicate = client.post("/ratings", json={"order_id": order["id"], "vendor_id": vendor_id, "score": 5})
        assert duplicate.status_code == 409

        summary = client.get("/suppliers/sup-gauteng-hardware/rating").json()
        assert summary["total_ratings"] >= 1

    def test_report_delay_notifies_vendor(self):
        vendor_id = new_vendor_id()
        order = place_order(vendor_id)
        eta = (datetime.now(timezone.utc) + timedelta(days=6)).isoformat()

        response = client.post(
            f"/orders/{order['id']}/report-delay",
            json={"revised_eta": eta, "reason": "Road closure"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["order"]["delivery_state"] == "AT_RISK"
        assert data["notification_sent"] is True

        inbox = client.get(f"/notifications/{vendor_id}").json()
        assert len(inbox) == 1
        read = client.post(f"/notifications/{inbox[0]['id']}/read")
        assert read.json()["read"] is True
        assert client.post(f"/notifications/{vendor_id}/read-all").json() == {"updated": 0}

    def test_cancel(self):
        order = place_order(new_vendor_id())
        response = client.post(f"/orders/{order['id']}/cancel")
        assert response.status_code == 200
        assert response.json()["order_state"] == "CANCELLED"


class TestInventory:
    def test_vendor_without_address_gets_failed_reorder(self):
        response = client.put(
            "/inventory/retailer",
            json={"vendor_id": "ven-popup-tools", "sku": "HAMMER-CLAW-16OZ", "quantity": 1},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["stock"]["quantity"] == 1
        assert data["auto_reorder"]["triggered"] is True
        assert data["auto_reorder"]["success"] is False

    def test_supplier_stock_update(self):
        response = client.put(
            "/inventory/supplier",
            json={"supplier_id": "sup-cape-steel", "sku": "WELDING-ROD-3.2MM-5KG", "quantity": 3},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "LOW"

        listing = client.get("/suppliers/sup-cape-steel/inventory").json()
        assert "WELDING-ROD-3.2MM-5KG" in [item["sku"] for item in listing]

    def test_unknown_sku(self):
        response = client.put(
            "/inventory/retailer",
            json={"vendor_id": "ven-oak-street", "sku": "NOPE", "quantity": 1},
        )
        assert response.status_code == 400


class TestAnalytics:
    def test_vendor_analytics_shape(self):
        vendor_id = new_vendor_id()
        order = place_order(vendor_id, subtotal=100)
        client.post(f"/orders/{order['id']}/accept", json={"supplier_id": "sup-gauteng-hardware"})
        client.post(f"/orders/{order['id']}/delivery-status", json={"status": "DELIVERED"})

        response = client.get(f"/analytics/vendors/{vendor_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["total_spend"] == 108.0
        assert data["reliability_percentage"] == 100
        assert len(data["disruption_heatmap"]) == 4
        assert data["trends"]["spend_trend"] == "+0.0%"

    def test_supplier_analytics(self):
        response = client.get("/analytics/suppliers/sup-cape-steel")
        assert response.status_code == 200
        assert "delivered_orders" in response.json()

    def test_vendor_recommendations(self):
        vendor_id = new_vendor_id()
        order = place_order(vendor_id)
        client.post(f"/orders/{order['id']}/accept", json={"supplier_id": "sup-gauteng-hardware"})

        response = client.get(f"/vendors/{vendor_id}/recommendations")
        assert response.status_code == 200
        data = response.json()
        assert 0 < len(data) <= 6
        assert data[0]["sku"] == "M8-BOLT-20"
        assert data[0]["total_sold"] >= 12
        assert set(data[0]) == {"sku", "name", "supplier_id", "supplier_name", "price", "total_sold"}
        sold = [item["total_sold"] for item in data]
        assert sold == sorted(sold, reverse=True)


class TestGraphQL:
    def test_schema_builds_with_typed_resolvers(self):
        sdl = str(graphql_schema())
        assert "vendorAnalytics(vendorId: String!)" in sdl
        assert "atRisk: Boolean!" in sdl
        assert "recommendations(vendorId: String!)" in sdl

    def test_order_query_exposes_risk(self):
        order = place_order(new_vendor_id())
        query = f'{{ order(id: "{order["id"]}") {{ id orderNumber atRisk deliveryState items {{ sku quantity }} }} }}'
        response = client.post("/graphql", json={"query": query})
        assert response.status_code == 200
        data = response.json()["data"]["order"]
        assert data["id"] == order["id"]
        assert data["atRisk"] is False
        assert data["items"] == [{"sku": "M8-BOLT-20", "quantity": 12}]

    def test_missing_order_is_null(self):
        response = client.post("/graphql", json={"query": '{ order(id: "missing") { id } }'})
        assert response.json()["data"]["order"] is None

    def test_vendor_analytics_query(self):
        vendor_id = new_vendor_id()
        query = f'{{ vendorAnalytics(vendorId: "{vendor_id}") {{ totalSpend reliabilityPercentage spendTrend }} }}'
        response = client.post("/graphql", json={"query": query})
        assert response.status_code == 200
        data = response.json()["data"]["vendorAnalytics"]
        assert data["totalSpend"] == 0
        assert data["spendTrend"] == "+0.0%"

    def test_recommendations_query(self):
        vendor_id = new_vendor_id()
        query = f'{{ recommendations(vendorId: "{vendor_id}") {{ sku supplierName price totalSold }} }}'
        response = client.post("/graphql", json={"query": query})
        assert response.status_code == 200
        items = response.json()["data"]["recommendations"]
        assert 0 < len(items) <= 6
        assert all(item["price"] > 0 for item in items)


class TestRateLimiting:
    def test_default_limit_applies(self):
        limited = TestClient(
            create_app(Settings(database_url=None, rate_limit_enabled=True, rate_limit_default="2/minute"))
        )
        statuses = [limited.get("/health").status_code for _ in range(3)]
        assert statuses == [200, 200, 429]

    def test_forwarded_client_is_used_as_key(self):
        limited = TestClient(
            create_app(Settings(database_url=None, rate_limit_enabled=True, rate_limit_default="1/minute"))
        )
        assert limited.get("/health", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert limited.get("/health", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}).status_code == 200
        assert limited.get("/health", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
