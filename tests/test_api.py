"""
Tests for the HTTP surface: checkout, customer reads, admin review, cron, error shape
"""
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from storefront.app import create_app
from storefront.auth import create_web_session
from storefront.routers.deps import set_pipeline


@pytest.fixture
def client(pipeline):
    set_pipeline(pipeline)
    with TestClient(create_app(use_lifespan=False)) as test_client:
        yield test_client
    set_pipeline(None)


def bearer(user_id: str = "user-1", is_admin: bool = False) -> dict:
    return {"Authorization": f"Bearer {create_web_session(user_id, name='Ko', is_admin=is_admin)}"}


def receipt_file():
    return {"screenshot": ("receipt.png", b"\x89PNG fake receipt bytes", "image/png")}


class TestCheckout:
    def test_requires_session(self, client):
        response = client.post("/api/orders", data={"productId": "prod-1", "paymentMethod": "kpay"})
        assert response.status_code == 401

    def test_create_order_hides_trust_signals(self, client, seed):
        seed.user("user-1")
        seed.product("prod-1", price=25000, stock=5)

        response = client.post(
            "/api/orders",
            data={"productId": "prod-1", "paymentMethod": "kpay", "quantity": "1"},
            files=receipt_file(),
            headers=bearer(),
        )

        assert response.status_code == 200
        order = response.json()["order"]
        assert order["status"] == "verifying"
        assert order["totalAmount"] == 25000.0
        assert order["deliveredKeys"] == []
        assert "screenshotHash" not in order
        assert "fraudFlags" not in order
        assert "ocrExtractedData" not in order

    def test_unknown_product_uses_error_shape(self, client, seed):
        seed.user("user-1")

        response = client.post(
            "/api/orders",
            data={"productId": "missing", "paymentMethod": "kpay"},
            files=receipt_file(),
            headers=bearer(),
        )

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Product not found", "code": "not_found"}

    def test_missing_screenshot(self, client, seed):
        seed.user("user-1")
        seed.product("prod-1")

        response = client.post(
            "/api/orders",
            data={"productId": "prod-1", "paymentMethod": "kpay"},
            headers=bearer(),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_cart_checkout(self, client, seed):
        seed.user("user-1")
        seed.product("prod-1", price=10000)
        seed.product("prod-2", price=5000)
        items = [{"productId": "prod-1", "quantity": 1}, {"productId": "prod-2", "quantity": 2}]

        response = client.post(
            "/api/orders/cart",
            data={"items": json.dumps(items), "paymentMethod": "wavemoney"},
            files=receipt_file(),
            headers=bearer(),
        )

        assert response.status_code == 200
        orders = response.json()["orders"]
        assert [o["product"] for o in orders] == ["prod-1", "prod-2"]
        assert len({o["paymentScreenshot"] for o in orders}) == 1

    def test_cart_rejects_garbage_items(self, client):
        response = client.post(
            "/api/orders/cart",
            data={"items": "not json", "paymentMethod": "wavemoney"},
            files=receipt_file(),
            headers=bearer(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid cart items"

    def test_vpn_plans_listed(self, client):
        plans = client.get("/api/vpn/plans").json()["plans"]
        assert any(plan["id"] == "1dev_3month" for plan in plans)


class TestCustomerReads:
    def test_own_order(self, client, seed):
        row = seed.order(status="verifying", fraudFlags=["first_time_user"])

        response = client.get(f"/api/orders/{row['id']}", headers=bearer())

        order = response.json()["data"]["order"]
        assert response.status_code == 200
        assert order["id"] == row["id"]
        assert "fraudFlags" not in order

    def test_someone_elses_order_is_not_found(self, client, seed):
        row = seed.order(user="user-2")

        response = client.get(f"/api/orders/{row['id']}", headers=bearer())

        assert response.status_code == 404
        assert response.json()["error"] == "Order not found"

    def test_coupon_preview_records_nothing(self, client, seed, fake_client):
        coupon_id = seed.coupon("SAVE20", discount_value=20, max_discount_amount=4000)

        response = client.post(
            "/api/coupons/validate",
            json={"code": "save20", "amount": 25000, "category": "streaming"},
            headers=bearer(),
        )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "code": "SAVE20",
            "discountType": "percentage",
            "discountValue": 20.0,
            "discountAmount": 4000.0,
            "finalAmount": 21000.0,
        }
        assert fake_client.row("coupons", coupon_id)["usedCount"] == 0

    def test_coupon_preview_rejects_unknown_code(self, client):
        response = client.post(
            "/api/coupons/validate", json={"code": "NOPE", "amount": 1000}, headers=bearer()
        )

        assert response.status_code == 404
        assert response.json()["error"] == "Invalid coupon code"

    def test_coupon_preview_needs_amount(self, client, seed):
        seed.coupon("SAVE20")

        response = client.post(
            "/api/coupons/validate", json={"code": "SAVE20", "amount": 0}, headers=bearer()
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Coupon code and order amount are required"

    def test_vpn_status_with_key(self, client, seed):
        expiry = int((datetime.now(UTC) + timedelta(days=30)).timestamp() * 1000)
        row = seed.order(
            orderType="vpn",
            product=None,
            status="completed",
            vpnPlan={"serverId": "sg1", "planId": "1dev_1month", "devices": 1, "months": 1, "protocol": "trojan"},
            vpnProvisionStatus="provisioned",
            vpnKey={
                "clientEmail": "Ko - 1D / Web (TR)",
                "clientUUID": "uuid-1",
                "subId": "sub123",
                "subLink": "https://sg1.example.net:2096/sub/sub123",
                "configLink": "trojan://uuid-1@sg1.example.net:443",
                "protocol": "trojan",
                "expiryTime": expiry,
            },
        )

        response = client.get(f"/api/vpn/status/{row['id']}", headers=bearer())

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["vpnProvisionStatus"] == "provisioned"
        assert data["vpnPlan"]["planId"] == "1dev_1month"
        assert data["vpnKey"]["subLink"].endswith("/sub/sub123")
        assert "clientUUID" not in data["vpnKey"]
        assert data["expired"] is False
        assert data["remainingMs"] > 0

    def test_vpn_status_before_approval_has_no_key(self, client, seed):
        row = seed.order(
            orderType="vpn",
            product=None,
            vpnPlan={"serverId": "sg1", "planId": "1dev_1month", "devices": 1, "months": 1, "protocol": "trojan"},
            vpnProvisionStatus="pending",
        )

        data = client.get(f"/api/vpn/status/{row['id']}", headers=bearer()).json()["data"]

        assert data["status"] == "verifying"
        assert "vpnKey" not in data

    def test_vpn_status_for_product_order(self, client, seed):
        row = seed.order()

        response = client.get(f"/api/vpn/status/{row['id']}", headers=bearer())

        assert response.status_code == 404
        assert response.json()["error"] == "VPN order not found"


class TestAdmin:
    def test_customers_are_forbidden(self, client):
        response = client.get("/api/admin/orders", headers=bearer())
        assert response.status_code == 403

    def test_listing_sweeps_and_shows_trust_signals(self, client, seed):
        overdue = seed.order(
            status="pending",
            paymentExpiresAt=(datetime.now(UTC) - timedelta(minutes=45)).isoformat(),
            fraudFlags=["first_time_user"],
        )

        response = client.get("/api/admin/orders", headers=bearer("admin-1", is_admin=True))

        body = response.json()
        assert response.status_code == 200
        assert body["expired"] == 1
        listed = next(o for o in body["orders"] if o["id"] == overdue["id"])
        assert listed["status"] == "rejected"
        assert listed["fraudFlags"] == ["first_time_user"]

    def test_reject_through_api(self, client, seed, fake_client):
        row = seed.order()

        response = client.patch(
            "/api/admin/orders",
            json={"orderId": row["id"], "status": "rejected", "rejectReason": "Wrong amount"},
            headers=bearer("admin-1", is_admin=True),
        )

        assert response.status_code == 200
        assert response.json()["order"]["rejectReason"] == "Wrong amount"
        assert fake_client.row("orders", row["id"])["status"] == "rejected"

    def test_invalid_transition_conflicts(self, client, seed):
        row = seed.order(status="rejected")

        response = client.patch(
            "/api/admin/orders",
            json={"orderId": row["id"], "status": "completed"},
            headers=bearer("admin-1", is_admin=True),
        )

        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_vpn_action_on_product_order(self, client, seed):
        row = seed.order()

        response = client.put(
            "/api/admin/orders",
            json={"orderId": row["id"], "action": "retry_provision"},
            headers=bearer("admin-1", is_admin=True),
        )

        assert response.status_code == 404


    def test_bulk_reject(self, client, seed, fake_client):
        rows = [seed.order(orderNumber=f"BD-00000{i}") for i in range(1, 3)]
        done = seed.order(orderNumber="BD-000009", status="completed")

        response = client.post(
            "/api/admin/orders/bulk",
            json={
                "action": "bulk_reject",
                "orderIds": [rows[0]["id"], rows[1]["id"], done["id"]],
                "rejectReason": "Duplicate receipt",
            },
            headers=bearer("admin-1", is_admin=True),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "2/3 orders processed successfully"
        assert body["data"]["successCount"] == 2
        assert body["data"]["failCount"] == 1
        failed = next(r for r in body["data"]["results"] if not r["success"])
        assert failed == {
            "orderId": done["id"],
            "success": False,
            "orderNumber": "BD-000009",
            "error": "Order BD-000009 is completed, cannot reject",
        }
        assert fake_client.row("orders", rows[0]["id"])["rejectReason"] == "Duplicate receipt"

    def test_bulk_reject_needs_reason(self, client, seed):
        row = seed.order()

        response = client.post(
            "/api/admin/orders/bulk",
            json={"action": "bulk_reject", "orderIds": [row["id"]]},
            headers=bearer("admin-1", is_admin=True),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Reject reason is required for bulk rejection"

    def test_bulk_is_admin_only(self, client, seed):
        row = seed.order()

        response = client.post(
            "/api/admin/orders/bulk",
            json={"action": "bulk_approve", "orderIds": [row["id"]]},
            headers=bearer(),
        )

        assert response.status_code == 403


class TestScreenshotPreview:
    def test_serves_quarantined_file(self, client, quarantine):
        path = "uploads/payments/pay-preview.png"
        stored = Path(quarantine.full_path(path))
        stored.parent.mkdir(parents=True)
        stored.write_bytes(b"\x89PNG receipt")

        response = client.get(
            "/api/admin/screenshot", params={"path": f"/{path}"}, headers=bearer("admin-1", is_admin=True)
        )

        assert response.status_code == 200
        assert response.content == b"\x89PNG receipt"
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "private, no-store, no-cache"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_released_file_redirects_to_public_url(self, client):
        response = client.get(
            "/api/admin/screenshot",
            params={"path": "uploads/payments/pay-gone.jpg"},
            headers=bearer("admin-1", is_admin=True),
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"] == "/uploads/payments/pay-gone.jpg"

    def test_path_outside_quarantine(self, client):
        response = client.get(
            "/api/admin/screenshot",
            params={"path": "../../etc/passwd"},
            headers=bearer("admin-1", is_admin=True),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid path"

    def test_customers_cannot_preview(self, client):
        response = client.get("/api/admin/screenshot", params={"path": "uploads/payments/x.jpg"}, headers=bearer())
        assert response.status_code == 403


class TestCron:
    def test_wrong_secret(self, client):
        response = client.get("/api/cron/expire-orders", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_expire_orders(self, client, seed):
        seed.order(status="verifying", paymentExpiresAt=(datetime.now(UTC) - timedelta(hours=1)).isoformat())

        response = client.get("/api/cron/expire-orders", headers={"Authorization": "Bearer test_cron_secret"})

        assert response.status_code == 200
        assert response.json() == {"expired": 1}

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"
