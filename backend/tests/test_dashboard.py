from datetime import date

import pytest

from app.libs.dashboard import (
    COUPONS_COLLECTION,
    MESSAGES_COLLECTION,
    UPDATE_REQUESTS_COLLECTION,
    AdminDashboard,
    client_rows,
    coupon_rows,
    filter_orders,
    format_date,
    order_detail,
    order_stats,
    render_ai_templates,
    render_coupons,
    render_messages,
    render_orders,
    render_update_requests,
    revenue_series,
)
from app.libs.document_store import SERVER_TIMESTAMP
from app.libs.editor_session import EditorContext
from app.libs.quiz import ORDERS_COLLECTION
from app.libs.settings import API_KEYS_DOCUMENT


def make_order(order_id, status, name="Asha", email="asha@example.com", created="2026-03-10T09:00:00+00:00", **extra):
    order = {
        "id": order_id,
        "status": status,
        "selectedTemplate": "Karma Master",
        "contactDetails": {"name": name, "email": email, "whatsapp": "+911234567890"},
        "estimatedPrice": 6999,
        "createdAt": created,
    }
    order.update(extra)
    return order


ORDERS = [
    make_order("o1", "Completed", finalPrice=5000, created="2026-03-10T09:00:00+00:00"),
    make_order("o2", "Completed", priceBreakdown={"totalPrice": 8000}, created="2026-03-12T18:30:00+00:00"),
    make_order("o3", "In Progress", name="Ravi", email="ravi@example.com"),
    make_order("o4", "Pending Payment", name="Meera", email="meera@example.com"),
    make_order("o5", "Pending", name="Asha", email="asha@example.com"),
]


class TestOrderTables:
    def test_stats(self):
        stats = order_stats(ORDERS)
        assert stats["total_revenue"] == 13000
        assert stats["total_revenue_display"] == "₹13,000"
        assert stats["pending_orders"] == 2
        assert stats["completed_projects"] == 2

    def test_filter_by_status_and_search(self):
        assert [o["id"] for o in filter_orders(ORDERS, status="Completed")] == ["o1", "o2"]
        assert [o["id"] for o in filter_orders(ORDERS, search="RAVI")] == ["o3"]
        assert [o["id"] for o in filter_orders(ORDERS, search="meera@")] == ["o4"]
        assert filter_orders(ORDERS, status="Cancelled") == []

    def test_render_orders_escapes_and_selects_status(self):
        orders = [make_order("o9", "In Progress", name="<b>Eve</b>")]
        html = render_orders(orders)
        assert "&lt;b&gt;Eve&lt;/b&gt;" in html
        assert '<option value="In Progress" selected>' in html
        assert "10/03/2026" in html

    def test_render_orders_empty(self):
        assert "No orders match criteria." in render_orders(ORDERS, search="nobody")

    def test_revenue_series_buckets_completed_orders_by_day(self):
        series = revenue_series(ORDERS, today=date(2026, 3, 15), days=7)
        assert series["labels"][0] == "09/03/2026"
        assert series["labels"][-1] == "15/03/2026"
        assert series["values"] == [0.0, 5000.0, 0.0, 8000.0, 0.0, 0.0, 0.0]

    def test_revenue_series_ignores_orders_outside_window(self):
        series = revenue_series(ORDERS, today=date(2026, 5, 1), days=30)
        assert sum(series["values"]) == 0

    def test_order_detail(self):
        order = make_order(
            "o7", "In Progress",
            priceBreakdown={"basePrice": 6999, "addOns": {"logo": 1500, "content": 0}, "totalPrice": 8499},
            appliedCoupon={"code": "SAVE10", "type": "percentage", "value": 10},
            finalPrice=7649,
            paymentDetails={"paymentId": "pay_1", "gateway": "Razorpay", "paidAt": "2026-03-11T10:00:00+00:00"},
        )
        detail = order_detail(order)
        assert detail["title"] == "Order for Asha"
        assert detail["subtotal"] == "₹6,999"
        assert detail["add_ons"] == {"logo": "₹1,500"}
        assert detail["coupon"] == "SAVE10"
        assert detail["total"] == "₹7,649"
        assert detail["payment"] == {"paymentId": "pay_1", "gateway": "Razorpay", "paidAt": "11/03/2026"}


class TestOtherTables:
    def test_clients_are_unique_by_email(self):
        rows = client_rows(ORDERS)
        assert [r["email"] for r in rows] == ["asha@example.com", "ravi@example.com", "meera@example.com"]
        assert rows[0]["order_count"] == 3

    def test_coupon_rows(self):
        rows = coupon_rows([
            {"id": "c1", "code": "SAVE10", "type": "percentage", "value": 10, "isActive": True},
            {"id": "c2", "code": "FLAT500", "type": "flat", "value": 500, "isActive": False},
        ])
        assert (rows[0]["value"], rows[0]["status"], rows[0]["action"]) == ("10%", "Active", "Deactivate")
        assert (rows[1]["value"], rows[1]["status"], rows[1]["action"]) == ("₹500", "Inactive", "Activate")
        assert "deactivate-coupon-btn" in render_coupons([{"id": "c1", "code": "X", "type": "flat", "value": 1,
                                                            "isActive": True}])

    def test_empty_tables(self):
        assert "No coupons created." in render_coupons([])
        assert "No messages." in render_messages([])
        assert "No update requests found." in render_update_requests([])
        assert "No AI templates have been generated yet." in render_ai_templates([])

    def test_update_requests_fall_back_to_description(self):
        html = render_update_requests([{"id": "u1", "orderId": "o1", "description": "Change the hero image",
                                        "status": "Pending Review", "requestedAt": "2026-01-02T00:00:00+00:00"}])
        assert "Change the hero image" in html
        assert "02/01/2026" in html
        assert '<option value="Pending Review" selected>' in html

    def test_format_date_missing(self):
        assert format_date(None) == "N/A"
        assert format_date("yesterday") == "N/A"


class TestAdminDashboard:
    @pytest.mark.asyncio
    async def test_feeds_follow_store_writes(self, store):
        dashboard = AdminDashboard(store)
        await dashboard.start()

        await store.add(ORDERS_COLLECTION, {"status": "Pending Payment", "createdAt": SERVER_TIMESTAMP,
                                            "contactDetails": {"name": "A", "email": "a@example.com"}})
        await store.add(ORDERS_COLLECTION, {"status": "Completed", "createdAt": SERVER_TIMESTAMP, "finalPrice": 100,
                                            "contactDetails": {"name": "B", "email": "b@example.com"}})
        await store.add(MESSAGES_COLLECTION, {"name": "C", "email": "c@example.com", "message": "Hi",
                                              "timestamp": SERVER_TIMESTAMP})

        assert [o["status"] for o in dashboard.orders] == ["Completed", "Pending Payment"]
        assert len(dashboard.records["messages"]) == 1
        view = dashboard.view()
        assert view["stats"]["total_revenue"] == 100
        assert view["stats"]["pending_orders"] == 1
        dashboard.stop()

    @pytest.mark.asyncio
    async def test_status_change_is_reflected_by_subscription(self, store):
        order_id = await store.add(ORDERS_COLLECTION, {"status": "Pending Payment", "createdAt": SERVER_TIMESTAMP})
        dashboard = AdminDashboard(store)
        await dashboard.start()

        dashboard.change_order_status(order_id, "In Progress")
        await dashboard.settle()

        assert dashboard.find_order(order_id)["status"] == "In Progress"
        assert dashboard.drain_notifications() == []

    @pytest.mark.asyncio
    async def test_failed_status_change_raises_blocking_alert(self, store):
        dashboard = AdminDashboard(store)
        await dashboard.start()

        dashboard.change_update_request_status("missing", "Completed")
        await dashboard.settle()

        assert dashboard.drain_notifications() == [
            {"message": "Failed to update status.", "type": "error", "blocking": True}
        ]

    @pytest.mark.asyncio
    async def test_coupons(self, store):
        dashboard = AdminDashboard(store)
        await dashboard.start()

        assert (await dashboard.create_coupon("", "flat", 100))["type"] == "error"
        assert (await dashboard.create_coupon("x", "flat", "abc"))["message"] == "Please fill all fields correctly."
        result = await dashboard.create_coupon(" diwali ", "percentage", "15")
        assert result == {"message": "Coupon created successfully!", "type": "success"}

        coupon = dashboard.coupons[0]
        assert (coupon["code"], coupon["value"], coupon["isActive"]) == ("DIWALI", 15.0, True)

        dashboard.toggle_coupon(coupon["id"], False)
        await dashboard.settle()
        assert dashboard.coupons[0]["isActive"] is False
        assert (await store.get(f"{COUPONS_COLLECTION}/{coupon['id']}")).data["isActive"] is False

    @pytest.mark.asyncio
    async def test_settings_round_trip(self, store):
        dashboard = AdminDashboard(store)

        assert await dashboard.load_settings() == {"razorpay_key_id": "", "gemini_api_key": ""}
        assert (await dashboard.save_settings("rzp_1", " "))["message"] == "Both API Keys are required."
        assert (await dashboard.save_settings("rzp_1", "gem_1"))["type"] == "success"

        assert await dashboard.load_settings() == {"razorpay_key_id": "rzp_1", "gemini_api_key": "gem_1"}
        assert (await store.get(API_KEYS_DOCUMENT)).data["razorpayKeyId"] == "rzp_1"

    @pytest.mark.asyncio
    async def test_update_requests_feed(self, store):
        dashboard = AdminDashboard(store)
        await dashboard.start()
        request_id = await store.add(UPDATE_REQUESTS_COLLECTION, {
            "orderId": "o1", "updateRequestText": "Please change the colours", "status": "Pending Review",
            "requestedAt": SERVER_TIMESTAMP,
        })

        dashboard.change_update_request_status(request_id, "Completed")
        await dashboard.settle()

        assert dashboard.view()["update_requests"][0]["status"] == "Completed"

    @pytest.mark.asyncio
    async def test_ai_templates_show_creator_email(self, store, register):
        dashboard = AdminDashboard(store)
        await dashboard.start()
        user = await register("asha@example.com")

        editor = EditorContext(user, store)
        await editor.create_project("Bakery")
        saved = EditorContext(user, store)
        assert await saved.save_project("Cafe")

        rows = {row["name"]: row for row in dashboard.view()["ai_templates"]}
        assert rows["Bakery"]["user_email"] == "asha@example.com"
        assert rows["Cafe"]["user_email"] == "asha@example.com"
        assert "asha@example.com" in render_ai_templates(dashboard.records["ai_templates"])
        dashboard.stop()
        editor.close()
        saved.close()
