import json

from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

import config
import main
import orders
from database import get_db

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def form_payload(payload):
    return {k: v if isinstance(v, str) else json.dumps(v) for k, v in payload.items()}


def test_checkout_returns_tracking_number(client, db, add_product, checkout_payload):
    pid = add_product()
    res = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}]))

    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    assert body["trackingNumber"] == body["order"]["trackingNumber"]
    assert body["order"]["status"] == "Received"
    assert db["product"].find_one({"_id": ObjectId(pid)})["quantity"] == 9


def test_bank_transfer_checkout_with_proof(client, db, add_product, checkout_payload, media_store):
    pid = add_product()
    payload = checkout_payload(
        [{"product": pid, "quantity": 1}],
        paymentMethod="bank_transfer",
        selectedAccount="meezan",
        paymentDetails={"accountName": "Meezan Bank", "accountNumber": "0101", "accountHolder": "Ayosi"},
    )
    res = client.post(
        "/api/orders",
        data=form_payload(payload),
        files={"transactionProof": ("receipt.png", PNG, "image/png")},
    )

    assert res.status_code == 201, res.text
    order = res.json()["order"]
    assert order["paymentStatus"] == "pending"
    assert order["transactionProof"] == media_store.uploaded[0]
    assert "ayosi-transaction-proofs" in order["transactionProof"]


def test_proof_must_be_an_image(client, db, add_product, checkout_payload, media_store):
    pid = add_product()
    payload = checkout_payload(
        [{"product": pid, "quantity": 1}],
        paymentMethod="bank_transfer",
        selectedAccount="meezan",
        paymentDetails={"accountName": "Meezan Bank"},
    )
    res = client.post(
        "/api/orders",
        data=form_payload(payload),
        files={"transactionProof": ("receipt.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert res.status_code == 400
    assert media_store.uploaded == []
    assert db["order"].count_documents({}) == 0


def test_checkout_validation_and_stock_errors_are_distinct(client, sized_ring, checkout_payload):
    res = client.post("/api/orders", json=checkout_payload([], email=""))
    assert res.status_code == 400
    assert res.json()["code"] == "validation_error"
    assert "email" in res.json()["message"]

    res = client.post("/api/orders", json=checkout_payload(
        [{"product": sized_ring, "quantity": 3, "selectedSize": "7-8"}]
    ))
    assert res.status_code == 409
    body = res.json()
    assert body["success"] is False
    assert body["code"] == "insufficient_stock"
    assert body["available"] == 0
    assert body["size"] == "7-8"


def test_malformed_json_body(client):
    res = client.post("/api/orders", content=b"{not json", headers={"content-type": "application/json"})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid JSON data in request"


def test_tracking_is_public(client, add_product, checkout_payload):
    pid = add_product()
    tracking = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}])).json()["trackingNumber"]

    res = client.get(f"/api/orders/track/{tracking}")
    assert res.status_code == 200
    order = res.json()["order"]
    assert order["trackingNumber"] == tracking
    assert order["statusHistory"][0]["status"] == "Received"

    assert client.get("/api/orders/track/AYOSI-00000000-NONE").status_code == 404


def test_admin_order_routes_need_a_token(client, db):
    assert client.get("/api/orders").status_code == 401
    assert client.get(f"/api/orders/{ObjectId()}").status_code == 401
    assert client.put(f"/api/orders/{ObjectId()}/status", json={"status": "Processing"}).status_code == 401


def test_admin_manages_orders(client, admin_headers, add_product, checkout_payload):
    pid = add_product()
    order_id = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}])).json()["order"]["id"]

    listed = client.get("/api/orders", headers=admin_headers).json()
    assert listed["success"] is True
    assert listed["orders"][0]["orderItems"][0]["product"]["id"] == pid

    res = client.put(
        f"/api/orders/{order_id}/status",
        json={"status": "Shipping", "courierCompany": "TCS", "shipmentDescription": "Out for delivery"},
        headers=admin_headers,
    )
    assert res.status_code == 200
    history = res.json()["order"]["statusHistory"]
    assert len(history) == 2
    assert history[-1]["courierCompany"] == "TCS"

    res = client.put(f"/api/orders/{order_id}/payment-status", json={"paymentStatus": "bogus"}, headers=admin_headers)
    assert res.status_code == 400

    res = client.put(f"/api/orders/{order_id}/payment-status", json={"paymentStatus": "rejected"}, headers=admin_headers)
    assert res.json()["order"]["paymentStatus"] == "rejected"

    assert client.get(f"/api/orders/{order_id}", headers=admin_headers).json()["order"]["id"] == order_id
    assert client.get(f"/api/orders/{ObjectId()}", headers=admin_headers).status_code == 404
    assert client.get("/api/orders/not-an-id", headers=admin_headers).status_code == 404


def test_status_body_is_required(client, admin_headers, add_product, checkout_payload):
    pid = add_product()
    order_id = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}])).json()["order"]["id"]
    res = client.put(f"/api/orders/{order_id}/status", json={}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Status is required"


def test_internal_errors_hide_details_in_production(client, add_product, checkout_payload, monkeypatch):
    def broken(*args, **kwargs):
        raise PyMongoError("socket closed")

    pid = add_product()
    monkeypatch.setattr(orders, "create_document", broken)

    res = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}]))
    assert res.status_code == 500
    assert res.json()["error"] == "socket closed"

    monkeypatch.setattr(config, "IS_PRODUCTION", True)
    res = client.post("/api/orders", json=checkout_payload([{"product": pid, "quantity": 1}]))
    assert res.status_code == 500
    assert res.json()["message"] == "Failed to create order"
    assert res.json()["error"] == "Something went wrong"


def test_unhandled_errors_become_500(db, monkeypatch):
    def boom(database):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(orders, "get_all_orders", boom)
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_current_admin] = lambda: {"isAdmin": True}
    try:
        res = TestClient(main.app, raise_server_exceptions=False).get("/api/orders")
    finally:
        main.app.dependency_overrides.clear()

    assert res.status_code == 500
    assert res.json()["message"] == "Internal server error"


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/health").json()["status"] == "OK"
