"""Tests for insight queries and their endpoints."""

from datetime import datetime, timedelta
from decimal import Decimal

from storepulse.models import Customer, Order, Product
from storepulse.services import insights_service

NOW = datetime(2024, 6, 15, 12, 0, 0)


def _seed(db, tenant):
    ada = Customer(tenant_id=tenant.id, shopify_id="1", first_name="Ada", last_name="Lovelace",
                   email="ada@example.com", total_spent=Decimal("900"), orders_count=4,
                   created_at=NOW - timedelta(days=3))
    bob = Customer(tenant_id=tenant.id, shopify_id="2", email="bob@example.com",
                   total_spent=Decimal("50"), orders_count=1, created_at=NOW - timedelta(days=60))
    db.add_all([ada, bob])
    db.flush()

    db.add_all([
        Order(tenant_id=tenant.id, shopify_id="o1", order_number="1001", total_price=Decimal("100.00"),
              order_date=NOW - timedelta(hours=2), customer_id=ada.id),
        Order(tenant_id=tenant.id, shopify_id="o2", order_number="1002", total_price=Decimal("40.00"),
              order_date=NOW - timedelta(hours=1)),
        Order(tenant_id=tenant.id, shopify_id="o3", order_number="1003", total_price=Decimal("60.00"),
              order_date=NOW - timedelta(days=2), customer_id=bob.id),
        Order(tenant_id=tenant.id, shopify_id="o4", order_number="1004", total_price=Decimal("25.00"),
              order_date=NOW - timedelta(days=40), customer_id=bob.id),
    ])
    db.add_all([
        Product(tenant_id=tenant.id, shopify_id="p1", title="Mug", product_type="Kitchen",
                price=Decimal("25"), inventory=3, created_at=NOW - timedelta(days=5)),
        Product(tenant_id=tenant.id, shopify_id="p2", title="Pan", product_type="Kitchen",
                price=Decimal("80"), inventory=1, created_at=NOW - timedelta(days=1)),
        Product(tenant_id=tenant.id, shopify_id="p3", title="Gift card", product_type="",
                price=Decimal("20"), inventory=0, created_at=NOW - timedelta(days=9)),
    ])
    db.commit()


def test_summary_counts_today_and_month(test_db_session, tenant, other_tenant):
    _seed(test_db_session, tenant)
    test_db_session.add(Order(tenant_id=other_tenant.id, shopify_id="x", total_price=Decimal("999"),
                              order_date=NOW))
    test_db_session.commit()

    summary = insights_service.get_summary(test_db_session, tenant.id, now=NOW)

    assert summary.totals.customers == 2
    assert summary.totals.orders == 4
    assert summary.totals.products == 3
    assert summary.totals.revenue == 225.0
    assert (summary.today.orders, summary.today.revenue) == (2, 140.0)
    assert (summary.this_month.orders, summary.this_month.revenue) == (3, 200.0)
    assert summary.this_month.new_customers == 1


def test_trends_bucket_by_day(test_db_session, tenant):
    _seed(test_db_session, tenant)

    trends = insights_service.get_trends(test_db_session, tenant.id, days=30, now=NOW)

    assert [(p.date.isoformat(), p.orders, p.revenue, p.customers) for p in trends.daily] == [
        ("2024-06-13", 1, 60.0, 1),
        ("2024-06-15", 2, 140.0, 1),
    ]
    assert trends.orders_per_day == 1.5
    assert trends.revenue_per_day == 100.0


def test_orders_by_date_respects_range(test_db_session, tenant):
    _seed(test_db_session, tenant)

    points = insights_service.get_orders_by_date(
        test_db_session, tenant.id, start_date=NOW - timedelta(days=50), end_date=NOW - timedelta(days=1)
    )

    assert [(p.orders, p.revenue) for p in points] == [(1, 25.0), (1, 60.0)]


def test_lists_are_ordered_and_tenant_scoped(test_db_session, tenant, other_tenant):
    _seed(test_db_session, tenant)
    test_db_session.add(Customer(tenant_id=other_tenant.id, shopify_id="1", total_spent=Decimal("5000")))
    test_db_session.commit()

    customers = insights_service.get_top_customers(test_db_session, tenant.id, limit=5)
    assert [c.name for c in customers] == ["Ada Lovelace", "bob@example.com"]

    products = insights_service.get_latest_products(test_db_session, tenant.id, limit=2)
    assert [p.title for p in products] == ["Pan", "Mug"]

    orders = insights_service.get_recent_orders(test_db_session, tenant.id, limit=3)
    assert [o.order_number for o in orders] == ["1002", "1001", "1003"]
    assert orders[0].customer_name == "Guest"
    assert orders[1].customer_email == "ada@example.com"


def test_product_type_counts_group_blank_types(test_db_session, tenant):
    _seed(test_db_session, tenant)

    counts = insights_service.get_product_type_counts(test_db_session, tenant.id)

    assert [(c.type, c.count) for c in counts] == [("Kitchen", 2), ("Uncategorized", 1)]


def test_insight_endpoints_respond(client, test_db_session, tenant, auth_headers):
    _seed(test_db_session, tenant)

    for path in (
        "/insights/summary",
        "/insights/orders-by-date",
        "/insights/top-customers",
        "/insights/trends",
        "/insights/products",
        "/insights/recent-orders",
        "/insights/revenue-by-product-type",
        "/insights/rfm-segments",
        "/insights/revenue-forecast",
    ):
        response = client.get(path, headers=auth_headers)
        assert response.status_code == 200, path


def test_forecast_endpoint_for_new_store(client, tenant, auth_headers):
    response = client.get("/insights/revenue-forecast", headers=auth_headers)

    data = response.json()
    assert data["trend"] == "insufficient_data"
    assert data["forecast"] == []
    assert data["confidence"] == 0


def test_insights_require_auth(client):
    assert client.get("/insights/summary").status_code == 401
