"""
Admin Dashboard

Table renderers are pure functions over lists of document dicts: each one
filters, maps records to row dicts, and can emit the table-body markup the
admin page swaps in. ``AdminDashboard`` holds the live-subscribed record
lists and re-renders whenever a subscription delivers.

Status changes and coupon toggles are fire-and-forget: the write is
scheduled and the view is refreshed by the subscription echo, never by the
write's return value. A failed write raises a blocking alert.
"""

import asyncio
import html
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from app.libs.currency import format_inr
from app.libs.document_store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, DocumentStoreError, get_document_store
from app.libs.settings import API_KEYS_DOCUMENT
from app.libs.models import (
    OPEN_ORDER_STATUSES,
    CouponType,
    Notification,
    NotificationType,
    OrderStatus,
)
from app.libs.project_data import PROJECTS_COLLECTION
from app.libs.quiz import ORDERS_COLLECTION

logger = logging.getLogger("stylo.dashboard")

COUPONS_COLLECTION = "coupons"
MESSAGES_COLLECTION = "contact_messages"
UPDATE_REQUESTS_COLLECTION = "update_requests"

ORDER_STATUS_OPTIONS = [
    OrderStatus.PENDING.value,
    OrderStatus.PENDING_PAYMENT.value,
    OrderStatus.IN_PROGRESS.value,
    OrderStatus.COMPLETED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.AWAITING_USER_PAYMENT.value,
]
UPDATE_STATUS_OPTIONS = ["Pending Review", "In Progress", "Completed", "Rejected"]

REVENUE_WINDOW_DAYS = 30


# =============================================================================
# FORMATTING HELPERS
# =============================================================================


def escape(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Stored timestamps are ISO strings; anything else is treated as missing."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def format_date(value: Any) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%d/%m/%Y") if parsed else "N/A"


def order_amount(order: Dict[str, Any]) -> Optional[float]:
    """Amount an order is worth: the paid price if any, else the quoted one."""
    for candidate in (
        order.get("finalPrice"),
        (order.get("priceBreakdown") or {}).get("totalPrice"),
        order.get("estimatedPrice"),
    ):
        if isinstance(candidate, (int, float)) and not isinstance(candidate, bool):
            return candidate
    return None


def status_dropdown(css_class: str, record_id: str, current: Optional[str], options: Iterable[str]) -> str:
    rendered = "".join(
        f'<option value="{escape(opt)}"{" selected" if opt == current else ""}>{escape(opt)}</option>'
        for opt in options
    )
    return f'<select class="status-select {css_class}" data-id="{escape(record_id)}">{rendered}</select>'


def render_table(rows: List[Dict[str, Any]], cells: Callable[[Dict[str, Any]], List[str]], col_span: int, empty_message: str) -> str:
    """Table body markup, or a single centered row when there is nothing to show."""
    if not rows:
        return f'<tr><td colspan="{col_span}" style="text-align:center;">{escape(empty_message)}</td></tr>'
    return "".join(
        f'<tr data-id="{escape(row.get("id"))}">' + "".join(f"<td>{cell}</td>" for cell in cells(row)) + "</tr>"
        for row in rows
    )


# =============================================================================
# ORDERS
# =============================================================================


def filter_orders(orders: List[Dict[str, Any]], status: str = "all", search: str = "") -> List[Dict[str, Any]]:
    """Orders matching a status (or ``all``) whose contact name or email contains ``search``."""
    needle = (search or "").strip().lower()

    def matches(order: Dict[str, Any]) -> bool:
        if status != "all" and order.get("status") != status:
            return False
        if not needle:
            return True
        contact = order.get("contactDetails") or {}
        haystacks = (contact.get("name"), contact.get("email"), order.get("selectedTemplate"))
        return any(needle in (h or "").lower() for h in haystacks)

    return [order for order in orders if matches(order)]


def order_rows(orders: List[Dict[str, Any]], status: str = "all", search: str = "") -> List[Dict[str, Any]]:
    rows = []
    for order in filter_orders(orders, status, search):
        contact = order.get("contactDetails") or {}
        amount = order_amount(order) or 0
        rows.append({
            "id": order.get("id"),
            "name": contact.get("name"),
            "email": contact.get("email"),
            "template": order.get("selectedTemplate") or "N/A",
            "amount": amount,
            "price": format_inr(amount),
            "status": order.get("status"),
            "date": format_date(order.get("createdAt")),
        })
    return rows


def render_orders(orders: List[Dict[str, Any]], status: str = "all", search: str = "") -> str:
    return render_table(
        order_rows(orders, status, search),
        lambda r: [
            escape(r["name"]),
            escape(r["template"]),
            r["price"],
            status_dropdown("order-status-select", r["id"], r["status"], ORDER_STATUS_OPTIONS),
            r["date"],
            f'<button class="action-btn view-btn" data-id="{escape(r["id"])}" title="View Details">View</button>',
        ],
        6,
        "No orders match criteria.",
    )


def order_stats(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Revenue and counts across all orders."""
    revenue = 0.0
    pending = 0
    completed = 0
    for order in orders:
        status = order.get("status")
        if status == OrderStatus.COMPLETED.value:
            amount = order_amount(order)
            if amount is not None:
                revenue += amount
            completed += 1
        if status in OPEN_ORDER_STATUSES:
            pending += 1
    return {
        "total_revenue": revenue,
        "total_revenue_display": format_inr(revenue),
        "pending_orders": pending,
        "completed_projects": completed,
    }


def revenue_series(orders: List[Dict[str, Any]], today: Optional[date] = None, days: int = REVENUE_WINDOW_DAYS) -> Dict[str, List[Any]]:
    """Completed revenue per day for the trailing window, oldest first."""
    today = today or date.today()
    buckets: "OrderedDict[date, float]" = OrderedDict(
        (today - timedelta(days=offset), 0.0) for offset in range(days - 1, -1, -1)
    )
    for order in orders:
        if order.get("status") != OrderStatus.COMPLETED.value:
            continue
        created = parse_timestamp(order.get("createdAt"))
        amount = order_amount(order)
        if created is None or amount is None:
            continue
        day = created.date()
        if day in buckets:
            buckets[day] += amount
    return {
        "labels": [d.strftime("%d/%m/%Y") for d in buckets],
        "values": list(buckets.values()),
    }


def order_detail(order: Dict[str, Any]) -> Dict[str, Any]:
    """Everything the order modal shows."""
    contact = order.get("contactDetails") or {}
    breakdown = order.get("priceBreakdown") or {}
    subtotal = breakdown.get("basePrice", order.get("estimatedPrice") or 0)
    total = order_amount(order)
    if total is None:
        total = subtotal
    coupon = order.get("appliedCoupon")
    payment = order.get("paymentDetails")
    return {
        "id": order.get("id"),
        "title": f"Order for {contact.get('name')}",
        "email": contact.get("email") or "N/A",
        "whatsapp": contact.get("whatsapp") or "N/A",
        "template": order.get("selectedTemplate"),
        "subtotal": format_inr(subtotal),
        "add_ons": {k: format_inr(v) for k, v in (breakdown.get("addOns") or {}).items() if v},
        "coupon": coupon.get("code") if coupon else None,
        "total": format_inr(total),
        "status": order.get("status"),
        "customizations": order.get("fullCustomizations") or [],
        "payment": {
            "paymentId": payment.get("paymentId"),
            "gateway": payment.get("gateway"),
            "paidAt": format_date(payment.get("paidAt")),
        } if payment else None,
    }


# =============================================================================
# CLIENTS, COUPONS, MESSAGES, UPDATE REQUESTS, AI TEMPLATES
# =============================================================================


def client_rows(orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One row per distinct contact email, first-seen details, with an order count."""
    clients: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for order in orders:
        contact = order.get("contactDetails") or {}
        email = contact.get("email")
        if not email:
            continue
        if email not in clients:
            clients[email] = {
                "id": email,
                "name": contact.get("name"),
                "email": email,
                "whatsapp": contact.get("whatsapp"),
                "order_count": 0,
            }
        clients[email]["order_count"] += 1
    return list(clients.values())


def render_clients(orders: List[Dict[str, Any]]) -> str:
    return render_table(
        client_rows(orders),
        lambda r: [escape(r["name"]), escape(r["email"]), escape(r["whatsapp"]), str(r["order_count"])],
        4,
        "No clients found.",
    )


def coupon_rows(coupons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = []
    for coupon in coupons:
        value = coupon.get("value") or 0
        active = bool(coupon.get("isActive"))
        rows.append({
            "id": coupon.get("id"),
            "code": coupon.get("code"),
            "type": coupon.get("type"),
            "value": f"{value:g}%" if coupon.get("type") == CouponType.PERCENTAGE.value else format_inr(value),
            "is_active": active,
            "status": "Active" if active else "Inactive",
            "action": "Deactivate" if active else "Activate",
        })
    return rows


def render_coupons(coupons: List[Dict[str, Any]]) -> str:
    def cells(r):
        color = "var(--success-color)" if r["is_active"] else "var(--danger-color)"
        css = "deactivate-coupon-btn" if r["is_active"] else "activate-coupon-btn"
        return [
            escape(r["code"]),
            escape(r["type"]),
            escape(r["value"]),
            f'<span style="color:{color};">{r["status"]}</span>',
            f'<button class="neumorphic-btn {css}" data-id="{escape(r["id"])}">{r["action"]}</button>',
        ]

    return render_table(coupon_rows(coupons), cells, 5, "No coupons created.")


def message_rows(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": m.get("id"),
            "name": m.get("name"),
            "email": m.get("email"),
            "message": m.get("message"),
            "date": format_date(m.get("timestamp")),
        }
        for m in messages
    ]


def render_messages(messages: List[Dict[str, Any]]) -> str:
    return render_table(
        message_rows(messages),
        lambda r: [escape(r["name"]), escape(r["email"]), escape(r["message"]), r["date"]],
        4,
        "No messages.",
    )


def update_request_rows(requests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": r.get("id"),
            "date": format_date(r.get("requestedAt")),
            "order_id": r.get("orderId"),
            "text": r.get("updateRequestText") or r.get("description"),
            "status": r.get("status"),
        }
        for r in requests
    ]


def render_update_requests(requests: List[Dict[str, Any]]) -> str:
    return render_table(
        update_request_rows(requests),
        lambda r: [
            r["date"],
            escape(r["order_id"]),
            escape(r["text"]),
            status_dropdown("update-status-select", r["id"], r["status"], UPDATE_STATUS_OPTIONS),
        ],
        4,
        "No update requests found.",
    )


def ai_template_rows(templates: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "id": t.get("id"),
            "name": t.get("name"),
            "user_email": t.get("userEmail"),
            "date": format_date(t.get("createdAt")),
        }
        for t in templates
    ]


def render_ai_templates(templates: List[Dict[str, Any]]) -> str:
    return render_table(
        ai_template_rows(templates),
        lambda r: [
            escape(r["name"]),
            escape(r["user_email"]),
            r["date"],
            f'<a href="preview.html?id={escape(r["id"])}" target="_blank" class="action-btn" title="Preview">Preview</a>'
            f'<button class="action-btn delete-ai-template-btn" data-id="{escape(r["id"])}" title="Delete">Delete</button>',
        ],
        4,
        "No AI templates have been generated yet.",
    )


# =============================================================================
# LIVE DASHBOARD
# =============================================================================


class AdminDashboard:
    """Live view over every admin collection."""

    FEEDS = {
        "orders": (ORDERS_COLLECTION, "createdAt"),
        "messages": (MESSAGES_COLLECTION, "timestamp"),
        "coupons": (COUPONS_COLLECTION, "createdAt"),
        "update_requests": (UPDATE_REQUESTS_COLLECTION, "requestedAt"),
        "ai_templates": (PROJECTS_COLLECTION, "createdAt"),
    }

    def __init__(self, store: Optional[DocumentStore] = None):
        self.store = store or get_document_store()
        self.records: Dict[str, List[Dict[str, Any]]] = {name: [] for name in self.FEEDS}
        self.notifications: List[Notification] = []
        self.status_filter = "all"
        self.search = ""
        self._unsubscribers: List[Callable[[], None]] = []
        self._pending: Set[asyncio.Task] = set()

    @property
    def orders(self) -> List[Dict[str, Any]]:
        return self.records["orders"]

    @property
    def coupons(self) -> List[Dict[str, Any]]:
        return self.records["coupons"]

    async def start(self) -> None:
        """Subscribe to every feed; each delivery replaces that feed's records."""
        if self._unsubscribers:
            return
        for name, (collection, order_by) in self.FEEDS.items():
            unsubscribe = await self.store.subscribe_query(
                collection,
                self._receiver(name),
                order_by=order_by,
                descending=True,
                on_error=self._error_handler(name),
            )
            self._unsubscribers.append(unsubscribe)

    def _receiver(self, name: str) -> Callable[[List[DocumentSnapshot]], None]:
        def receive(snapshots: List[DocumentSnapshot]) -> None:
            self.records[name] = [s.to_dict() for s in snapshots]
        return receive

    def _error_handler(self, name: str) -> Callable[[Exception], None]:
        def on_error(error: Exception) -> None:
            logger.error("Error fetching %s: %s", name, error)
        return on_error

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def alert(self, message: str) -> None:
        self.notifications.append(Notification(message, NotificationType.ERROR, blocking=True))

    def drain_notifications(self) -> List[Dict[str, Any]]:
        drained = [n.to_dict() for n in self.notifications]
        self.notifications = []
        return drained

    # -------------------------------------------------------------------------
    # Fire-and-forget writes
    # -------------------------------------------------------------------------

    def _fire(self, write, failure_message: str, context: str) -> asyncio.Task:
        async def run():
            try:
                await write
            except DocumentStoreError as e:
                logger.error("%s failed: %s", context, e)
                self.alert(failure_message)

        task = asyncio.ensure_future(run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def settle(self) -> None:
        """Wait for scheduled writes; used before answering a request."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def change_status(self, collection: str, doc_id: str, status: str) -> asyncio.Task:
        return self._fire(
            self.store.update(f"{collection}/{doc_id}", {"status": status}),
            "Failed to update status.",
            f"Status change of {collection}/{doc_id}",
        )

    def change_order_status(self, order_id: str, status: str) -> asyncio.Task:
        return self.change_status(ORDERS_COLLECTION, order_id, status)

    def change_update_request_status(self, request_id: str, status: str) -> asyncio.Task:
        return self.change_status(UPDATE_REQUESTS_COLLECTION, request_id, status)

    def toggle_coupon(self, coupon_id: str, active: bool) -> asyncio.Task:
        return self._fire(
            self.store.update(f"{COUPONS_COLLECTION}/{coupon_id}", {"isActive": active}),
            "Failed to update coupon status.",
            f"Coupon toggle of {coupon_id}",
        )

    # -------------------------------------------------------------------------
    # Awaited writes
    # -------------------------------------------------------------------------

    async def create_coupon(self, code: str, coupon_type: str, value: Any) -> Dict[str, Any]:
        """Returns a form-status dict: ``{"message", "type"}``."""
        code = (code or "").strip().upper()
        try:
            amount = float(value)
        except (TypeError, ValueError):
            amount = 0
        if not code or amount <= 0 or coupon_type not in {t.value for t in CouponType}:
            return {"message": "Please fill all fields correctly.", "type": "error"}
        try:
            await self.store.add(COUPONS_COLLECTION, {
                "code": code,
                "type": coupon_type,
                "value": amount,
                "isActive": True,
                "createdAt": SERVER_TIMESTAMP,
            })
        except DocumentStoreError as e:
            logger.error("Error creating coupon: %s", e)
            return {"message": "Error creating coupon.", "type": "error"}
        return {"message": "Coupon created successfully!", "type": "success"}

    async def load_settings(self) -> Dict[str, str]:
        snapshot = await self.store.get(API_KEYS_DOCUMENT)
        data = snapshot.data or {}
        return {
            "razorpay_key_id": data.get("razorpayKeyId") or "",
            "gemini_api_key": data.get("geminiApiKey") or "",
        }

    async def save_settings(self, razorpay_key_id: Optional[str], gemini_api_key: Optional[str]) -> Dict[str, Any]:
        razorpay_key_id = (razorpay_key_id or "").strip()
        gemini_api_key = (gemini_api_key or "").strip()
        if not razorpay_key_id or not gemini_api_key:
            return {"message": "Both API Keys are required.", "type": "error"}
        try:
            await self.store.set(
                API_KEYS_DOCUMENT,
                {"razorpayKeyId": razorpay_key_id, "geminiApiKey": gemini_api_key},
                merge=True,
            )
        except DocumentStoreError as e:
            logger.error("Error saving settings: %s", e)
            return {"message": "Failed to save settings.", "type": "error"}
        return {"message": "Settings saved successfully!", "type": "success"}

    async def delete_ai_template(self, template_id: str) -> bool:
        try:
            await self.store.delete(f"{PROJECTS_COLLECTION}/{template_id}")
        except DocumentStoreError as e:
            logger.error("Error deleting AI template: %s", e)
            self.alert("Failed to delete the template.")
            return False
        return True

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    def find_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        return next((o for o in self.orders if o.get("id") == order_id), None)

    def view(self, today: Optional[date] = None) -> Dict[str, Any]:
        orders = self.orders
        return {
            "stats": order_stats(orders),
            "revenue_chart": revenue_series(orders, today),
            "filter": {"status": self.status_filter, "search": self.search},
            "orders": order_rows(orders, self.status_filter, self.search),
            "orders_html": render_orders(orders, self.status_filter, self.search),
            "clients": client_rows(orders),
            "clients_html": render_clients(orders),
            "coupons": coupon_rows(self.coupons),
            "coupons_html": render_coupons(self.coupons),
            "messages": message_rows(self.records["messages"]),
            "messages_html": render_messages(self.records["messages"]),
            "update_requests": update_request_rows(self.records["update_requests"]),
            "update_requests_html": render_update_requests(self.records["update_requests"]),
            "ai_templates": ai_template_rows(self.records["ai_templates"]),
            "ai_templates_html": render_ai_templates(self.records["ai_templates"]),
            "notifications": self.drain_notifications(),
        }


_dashboard: Optional[AdminDashboard] = None


async def get_admin_dashboard() -> AdminDashboard:
    """Shared dashboard, subscribed on first use."""
    global _dashboard
    if _dashboard is None:
        _dashboard = AdminDashboard()
        await _dashboard.start()
    return _dashboard


def reset_admin_dashboard() -> None:
    global _dashboard
    if _dashboard is not None:
        _dashboard.stop()
    _dashboard = None
