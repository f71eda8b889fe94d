"""Tests for the Shopify webhook receiver."""

import uuid
from decimal import Decimal

from storepulse.models import Customer, Event, Order, OrderLineItem, Product

from conftest import customer_payload, make_tenant, order_payload, product_payload, sign, webhook_request


def _post(client, tenant_id, body, headers):
    return client.post(f"/webhooks/shopify/{tenant_id}", content=body, headers=headers)


def test_signed_customer_webhook_is_applied(client, test_db_session, tenant):
    body, headers = webhook_request(customer_payload(), "customers/create")

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["received"] is True
    assert response.json()["error"] is None
    customer = test_db_session.query(Customer).one()
    assert customer.tenant_id == tenant.id
    assert customer.total_spent == Decimal("250.00")


def test_bad_signature_is_acknowledged_but_dropped(client, test_db_session, tenant):
    body, headers = webhook_request(customer_payload(), "customers/create")
    headers["X-Shopify-Hmac-SHA256"] = sign(body, "not-the-secret")

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": "Invalid signature"}
    assert test_db_session.query(Customer).count() == 0


def test_missing_signature_is_acknowledged_but_dropped(client, test_db_session, tenant):
    body, headers = webhook_request(customer_payload(), "customers/create")
    del headers["X-Shopify-Hmac-SHA256"]

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["error"] == "Invalid signature"
    assert test_db_session.query(Customer).count() == 0


def test_prefixed_signature_is_accepted(client, test_db_session, tenant):
    body, headers = webhook_request(product_payload(), "products/update")
    headers["X-Shopify-Hmac-SHA256"] = "sha256=" + headers["X-Shopify-Hmac-SHA256"]

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["error"] is None
    assert test_db_session.query(Product).count() == 1


def test_tenant_secret_takes_precedence(client, test_db_session):
    shop = make_tenant(test_db_session, "Hooli", "hooli", access_token="shpat_hooli", webhook_secret="hooli-secret")

    body, headers = webhook_request(customer_payload(), "customers/create")
    rejected = _post(client, shop.id, body, headers)

    body, headers = webhook_request(customer_payload(), "customers/create", secret="hooli-secret")
    accepted = _post(client, shop.id, body, headers)

    assert rejected.json()["error"] == "Invalid signature"
    assert accepted.json()["error"] is None
    assert test_db_session.query(Customer).filter(Customer.tenant_id == shop.id).count() == 1


def test_unknown_tenant_is_acknowledged(client, test_db_session):
    body, headers = webhook_request(customer_payload(), "customers/create")

    for tenant_id in (uuid.uuid4(), "not-a-uuid"):
        response = _post(client, tenant_id, body, headers)
        assert response.status_code == 200
        assert response.json()["error"] == "Unknown tenant"

    assert test_db_session.query(Customer).count() == 0


def test_order_update_replaces_line_items(client, test_db_session, tenant):
    customer = {"id": 42, "email": "grace@example.com", "first_name": "Grace"}
    body, headers = webhook_request(order_payload(customer=customer), "orders/create")
    _post(client, tenant.id, body, headers)

    updated = order_payload(customer=customer, financial_status="refunded", line_items=[
        {"id": 9, "product_id": 79, "title": "Gift card", "quantity": 1, "price": "20.00"},
    ])
    body, headers = webhook_request(updated, "orders/updated")
    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    order = test_db_session.query(Order).one()
    assert order.financial_status == "refunded"
    assert order.customer.email == "grace@example.com"
    items = test_db_session.query(OrderLineItem).all()
    assert [item.title for item in items] == ["Gift card"]


def test_cart_topics_append_events(client, test_db_session, tenant):
    cart = {"token": "cart-1", "customer": {"id": 42}, "line_items": []}
    for topic in ("carts/create", "checkouts/create", "checkouts/delete"):
        body, headers = webhook_request(cart, topic)
        assert _post(client, tenant.id, body, headers).status_code == 200

    types = sorted(event.type for event in test_db_session.query(Event).all())
    assert types == ["cart_abandoned", "cart_updated", "checkout_started"]


def test_unhandled_topic_is_ignored(client, test_db_session, tenant):
    body, headers = webhook_request({"id": 1}, "app/uninstalled")

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": None}
    assert test_db_session.query(Event).count() == 0


def test_malformed_payload_is_acknowledged(client, test_db_session, tenant):
    payload = order_payload()
    del payload["created_at"]
    body, headers = webhook_request(payload, "orders/create")

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["error"] == "Malformed payload"
    assert test_db_session.query(Order).count() == 0


def test_invalid_json_is_acknowledged(client, tenant):
    body = b"{not json"
    headers = {"X-Shopify-Topic": "customers/create", "X-Shopify-Hmac-SHA256": sign(body)}

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["error"] == "Invalid JSON payload"


def test_webhook_and_sync_paths_store_the_same_row(client, test_db_session, tenant):
    from storepulse.services.reconciliation import upsert_customer

    payload = customer_payload()
    upsert_customer(test_db_session, tenant.id, payload)
    before = {c: getattr(test_db_session.query(Customer).one(), c)
              for c in ("email", "first_name", "last_name", "phone", "tags", "total_spent", "orders_count")}

    body, headers = webhook_request(payload, "customers/update")
    _post(client, tenant.id, body, headers)

    test_db_session.expire_all()
    after = test_db_session.query(Customer).one()
    assert {c: getattr(after, c) for c in before} == before


def test_wrongly_shaped_order_is_reported_as_malformed(client, test_db_session, tenant):
    payload = order_payload(customer={"id": 42, "default_address": "nowhere"})
    body, headers = webhook_request(payload, "orders/create")

    response = _post(client, tenant.id, body, headers)

    assert response.status_code == 200
    assert response.json()["error"] == "Malformed payload"
    assert test_db_session.query(Order).count() == 0
