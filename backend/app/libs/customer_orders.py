"""
Customer Orders

The customer's side of orders: listing them, resuming payment for an order
saved earlier, requesting updates after delivery, and the public contact form.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.auth import User
from app.libs.currency import format_inr
from app.libs.dashboard import MESSAGES_COLLECTION, UPDATE_REQUESTS_COLLECTION, order_amount, parse_timestamp
from app.libs.document_store import SERVER_TIMESTAMP, DocumentStore, get_document_store
from app.libs.models import TERMINAL_ORDER_STATUSES, OrderStatus
from app.libs.quiz import HANDOFFS_COLLECTION, ORDERS_COLLECTION

logger = logging.getLogger("stylo.customer_orders")

UPDATE_WINDOW = timedelta(days=365)
MIN_UPDATE_REQUEST_LENGTH = 15
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class OrderError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def update_eligible(order: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """Orders get free updates for one year after payment (or creation)."""
    stamp = parse_timestamp((order.get("paymentDetails") or {}).get("paidAt")) or parse_timestamp(order.get("createdAt"))
    if stamp is None:
        return False
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) < stamp + UPDATE_WINDOW


def order_card(order: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    total = (order.get("priceBreakdown") or {}).get("totalPrice", order.get("estimatedPrice") or 0)
    return {
        "id": order.get("id"),
        "template": order.get("selectedTemplate"),
        "status": order.get("status"),
        "total": format_inr(total),
        "amount": order_amount(order),
        "update_eligible": update_eligible(order, now),
    }


async def list_orders(user: User, store: Optional[DocumentStore] = None) -> Dict[str, List[Dict[str, Any]]]:
    """The user's orders split into awaiting-payment and everything else."""
    store = store or get_document_store()
    snapshots = await store.query(
        ORDERS_COLLECTION, where=[("userId", "==", user.sub)], order_by="createdAt", descending=True
    )
    pending, others = [], []
    for snapshot in snapshots:
        card = order_card(snapshot.to_dict())
        (pending if card["status"] == OrderStatus.PENDING_PAYMENT.value else others).append(card)
    return {"pending": pending, "others": others}


async def _own_order(user: User, order_id: str, store: DocumentStore) -> Dict[str, Any]:
    snapshot = await store.get(f"{ORDERS_COLLECTION}/{order_id}")
    if not snapshot.exists or snapshot.data.get("userId") != user.sub:
        raise OrderError("Order not found.", status_code=404)
    return snapshot.to_dict()


async def resume_payment(user: User, order_id: str, store: Optional[DocumentStore] = None) -> Dict[str, Any]:
    """Write a checkout handoff for an order saved without paying."""
    store = store or get_document_store()
    order = await _own_order(user, order_id, store)
    if order.get("status") == OrderStatus.IN_PROGRESS.value or order.get("status") in TERMINAL_ORDER_STATUSES:
        raise OrderError(f"Order is already {order['status']}.", status_code=409)
    handoff = {
        "price": (order.get("priceBreakdown") or {}).get("totalPrice", order.get("estimatedPrice")),
        "orderId": order_id,
        "summary": [{"question": "Template", "text": order.get("selectedTemplate")}],
        "contact": order.get("contactDetails"),
    }
    await store.set(f"{HANDOFFS_COLLECTION}/{user.sub}", handoff)
    if order.get("status") == OrderStatus.PENDING.value:
        await store.update(f"{ORDERS_COLLECTION}/{order_id}", {"status": OrderStatus.PENDING_PAYMENT.value})
    return handoff


async def request_update(user: User, order_id: str, text: str, store: Optional[DocumentStore] = None) -> str:
    store = store or get_document_store()
    text = (text or "").strip()
    if len(text) < MIN_UPDATE_REQUEST_LENGTH:
        raise OrderError("Please provide a more detailed description.")
    order = await _own_order(user, order_id, store)
    if not update_eligible(order):
        raise OrderError("1-year free update period has ended.", status_code=403)
    request_id = await store.add(UPDATE_REQUESTS_COLLECTION, {
        "orderId": order_id,
        "updateRequestText": text,
        "requestedAt": SERVER_TIMESTAMP,
        "status": "Pending Review",
        "userId": user.sub,
    })
    logger.info("Update request %s for order %s", request_id, order_id)
    return request_id


async def send_contact_message(name: str, email: str, message: str, store: Optional[DocumentStore] = None) -> str:
    name, email, message = (name or "").strip(), (email or "").strip(), (message or "").strip()
    if not name or not email or not message:
        raise OrderError("Please fill out all fields.")
    if not EMAIL_PATTERN.match(email):
        raise OrderError("Please enter a valid email.")
    store = store or get_document_store()
    return await store.add(MESSAGES_COLLECTION, {
        "name": name,
        "email": email,
        "message": message,
        "timestamp": SERVER_TIMESTAMP,
    })
