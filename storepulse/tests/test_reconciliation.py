"""Tests for record reconciliation (shared by sync and webhooks)."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from storepulse.errors import MalformedRecordError, StorageError
from storepulse.models import Customer, Event, EventTypeEnum, Order, OrderLineItem, Product, SyncTypeEnum
from storepulse.services.reconciliation import (
    reconcile_record,
    record_event,
    resolve_topic,
    upsert_customer,
    upsert_order,
    upsert_product,
)

from conftest import customer_payload, order_payload, product_payload


class TestCustomers:
    def test_same_payload_twice_leaves_one_identical_row(self, test_db_session, tenant):
        payload = customer_payload()

        upsert_customer(test_db_session, tenant.id, payload)
        upsert_customer(test_db_session, tenant.id, payload)

        rows = test_db_session.query(Customer).filter(Customer.tenant_id == tenant.id).all()
        assert len(rows) == 1
        customer = rows[0]
        assert customer.shopify_id == "1001"
        assert customer.total_spent == Decimal("250.00")
        assert customer.orders_count == 3
        assert customer.tags == "vip, wholesale"
        # Stored as naive UTC
        assert customer.shopify_created_at == datetime(2024, 1, 5, 15, 0, 0)

    def test_full_payload_overwrites_counters_verbatim(self, test_db_session, tenant):
        upsert_customer(test_db_session, tenant.id, customer_payload(total_spent="250.00", orders_count=3))
        upsert_customer(test_db_session, tenant.id, customer_payload(total_spent="40.00", orders_count=1, phone=None))

        customer = test_db_session.query(Customer).one()
        assert customer.total_spent == Decimal("40.00")
        assert customer.orders_count == 1
        assert customer.phone is None

    def test_same_shopify_id_in_two_tenants_is_two_rows(self, test_db_session, tenant, other_tenant):
        upsert_customer(test_db_session, tenant.id, customer_payload(email="a@acme.test"))
        upsert_customer(test_db_session, other_tenant.id, customer_payload(email="a@globex.test"))

        rows = test_db_session.query(Customer).filter(Customer.shopify_id == "1001").all()
        assert len(rows) == 2
        by_tenant = {row.tenant_id: row.email for row in rows}
        assert by_tenant[tenant.id] == "a@acme.test"
        assert by_tenant[other_tenant.id] == "a@globex.test"

    def test_missing_id_is_malformed_and_writes_nothing(self, test_db_session, tenant):
        payload = customer_payload()
        del payload["id"]

        with pytest.raises(MalformedRecordError):
            upsert_customer(test_db_session, tenant.id, payload)

        assert test_db_session.query(Customer).count() == 0

    def test_unparseable_money_is_malformed(self, test_db_session, tenant):
        with pytest.raises(MalformedRecordError) as exc_info:
            upsert_customer(test_db_session, tenant.id, customer_payload(total_spent="lots"))

        assert exc_info.value.kind == "customer"
        assert test_db_session.query(Customer).count() == 0


class TestOrders:
    def test_line_items_are_replaced_not_merged(self, test_db_session, tenant):
        upsert_order(test_db_session, tenant.id, order_payload())
        assert test_db_session.query(OrderLineItem).count() == 2

        upsert_order(test_db_session, tenant.id, order_payload(line_items=[
            {"id": 3, "product_id": 72, "variant_id": 720, "title": "Cap", "quantity": 4, "price": "15.00"},
        ]))

        order = test_db_session.query(Order).one()
        items = test_db_session.query(OrderLineItem).all()
        assert len(items) == 1
        assert items[0].order_id == order.id
        assert items[0].title == "Cap"
        assert items[0].quantity == 4
        assert items[0].price == Decimal("15.00")

    def test_guest_order_has_no_customer(self, test_db_session, tenant):
        order = upsert_order(test_db_session, tenant.id, order_payload(customer=None))

        assert order.customer_id is None
        assert order.customer_name == "Guest"
        assert test_db_session.query(Customer).count() == 0

    def test_embedded_customer_is_created_with_zero_counters(self, test_db_session, tenant):
        embedded = {
            "id": 42,
            "email": "grace@example.com",
            "first_name": None,
            "default_address": {"first_name": "Grace", "last_name": "Hopper", "phone": "+15550042"},
        }
        order = upsert_order(test_db_session, tenant.id, order_payload(customer=embedded))

        customer = test_db_session.query(Customer).one()
        assert order.customer_id == customer.id
        assert customer.first_name == "Grace"
        assert customer.last_name == "Hopper"
        assert customer.phone == "+15550042"
        assert customer.total_spent == Decimal("0")
        assert customer.orders_count == 0
        assert order.customer_name == "Grace Hopper"

    def test_embedded_customer_keeps_synced_counters(self, test_db_session, tenant):
        upsert_customer(test_db_session, tenant.id, customer_payload(shopify_id=42, total_spent="900.00", orders_count=7))

        upsert_order(test_db_session, tenant.id, order_payload(customer={"id": 42, "email": "new@example.com"}))

        customer = test_db_session.query(Customer).one()
        assert customer.email == "new@example.com"
        assert customer.first_name == "Ada"
        assert customer.total_spent == Decimal("900.00")
        assert customer.orders_count == 7

    def test_order_fields_are_mapped(self, test_db_session, tenant):
        order = upsert_order(test_db_session, tenant.id, order_payload())

        assert order.shopify_id == "5001"
        assert order.order_number == "1001"
        assert order.name == "#1001"
        assert order.total_price == Decimal("120.50")
        assert order.total_tax == Decimal("10.50")
        assert order.financial_status == "paid"
        assert order.fulfillment_status is None
        assert order.order_date == datetime(2024, 3, 1, 12, 0, 0)

    def test_order_without_created_at_is_malformed(self, test_db_session, tenant):
        with pytest.raises(MalformedRecordError):
            upsert_order(test_db_session, tenant.id, order_payload(created_at=None))

        assert test_db_session.query(Order).count() == 0

    def test_bad_line_item_writes_nothing_at_all(self, test_db_session, tenant):
        payload = order_payload(
            customer={"id": 42, "email": "x@example.com"},
            line_items=[{"id": 1, "title": "Mug", "quantity": "two", "price": "1.00"}],
        )

        with pytest.raises(MalformedRecordError):
            upsert_order(test_db_session, tenant.id, payload)

        assert test_db_session.query(Order).count() == 0
        assert test_db_session.query(Customer).count() == 0

    def test_negative_total_is_malformed(self, test_db_session, tenant):
        with pytest.raises(MalformedRecordError):
            upsert_order(test_db_session, tenant.id, order_payload(total_price="-5.00"))

    @pytest.mark.parametrize("overrides", [
        {"customer": {"id": 42, "default_address": "nowhere"}},
        {"customer": "guest"},
        {"line_items": "mug"},
        {"line_items": {"id": 1, "title": "Mug"}},
    ])
    def test_wrongly_shaped_nested_fields_are_malformed(self, test_db_session, tenant, overrides):
        with pytest.raises(MalformedRecordError):
            upsert_order(test_db_session, tenant.id, order_payload(**overrides))

        assert test_db_session.query(Order).count() == 0
        assert test_db_session.query(Customer).count() == 0


class TestProducts:
    def test_first_variant_drives_price_and_inventory(self, test_db_session, tenant):
        product = upsert_product(test_db_session, tenant.id, product_payload())

        assert product.price == Decimal("25.00")
        assert product.compare_at_price == Decimal("30.00")
        assert product.inventory == 12
        assert product.image_url == "https://cdn.example.com/mug.png"

    def test_image_falls_back_to_first_image(self, test_db_session, tenant):
        product = upsert_product(test_db_session, tenant.id, product_payload(
            image=None,
            images=[{"src": "https://cdn.example.com/alt.png"}],
        ))

        assert product.image_url == "https://cdn.example.com/alt.png"

    def test_product_without_variants_defaults_to_zero(self, test_db_session, tenant):
        product = upsert_product(test_db_session, tenant.id, product_payload(variants=[], status=None))

        assert product.price == Decimal("0")
        assert product.compare_at_price is None
        assert product.inventory == 0
        assert product.status == "active"

    @pytest.mark.parametrize("overrides", [
        {"variants": {"a": 1}},
        {"variants": ["25.00"]},
        {"image": None, "images": {"src": "https://cdn.example.com/alt.png"}},
        {"image": None, "images": ["https://cdn.example.com/alt.png"]},
        {"image": "https://cdn.example.com/mug.png"},
    ])
    def test_wrongly_shaped_nested_fields_are_malformed(self, test_db_session, tenant, overrides):
        with pytest.raises(MalformedRecordError):
            upsert_product(test_db_session, tenant.id, product_payload(**overrides))

        assert test_db_session.query(Product).count() == 0

    def test_upsert_is_idempotent(self, test_db_session, tenant):
        upsert_product(test_db_session, tenant.id, product_payload())
        upsert_product(test_db_session, tenant.id, product_payload(title="Ceramic Mug v2"))

        product = test_db_session.query(Product).one()
        assert product.title == "Ceramic Mug v2"


class TestDispatch:
    def test_reconcile_record_dispatches_by_kind(self, test_db_session, tenant):
        reconcile_record(test_db_session, tenant.id, SyncTypeEnum.customers, customer_payload())
        reconcile_record(test_db_session, tenant.id, "orders", order_payload())
        reconcile_record(test_db_session, tenant.id, SyncTypeEnum.products, product_payload())

        assert test_db_session.query(Customer).count() == 1
        assert test_db_session.query(Order).count() == 1
        assert test_db_session.query(Product).count() == 1

    def test_resolve_topic(self):
        assert resolve_topic("orders/updated") == (SyncTypeEnum.orders, None)
        assert resolve_topic("checkouts/delete") == (None, EventTypeEnum.cart_abandoned)
        assert resolve_topic("app/uninstalled") == (None, None)
        assert resolve_topic(None) == (None, None)

    def test_record_event_appends(self, test_db_session, tenant):
        payload = {"token": "cart-abc", "customer": {"id": 42}, "line_items": []}

        record_event(test_db_session, tenant.id, EventTypeEnum.cart_updated, payload)
        record_event(test_db_session, tenant.id, EventTypeEnum.cart_updated, payload)

        events = test_db_session.query(Event).all()
        assert len(events) == 2
        assert events[0].type == "cart_updated"
        assert events[0].source == "webhook"
        assert events[0].session_id == "cart-abc"
        assert events[0].customer_shopify_id == "42"
        assert events[0].payload["token"] == "cart-abc"

    def test_commit_failure_raises_storage_error(self, test_db_session, tenant, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(test_db_session, "commit", failing_commit)

        with pytest.raises(StorageError):
            upsert_customer(test_db_session, tenant.id, customer_payload())
