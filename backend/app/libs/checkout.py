"""
Checkout Session

Picks up the handoff record written by the quiz, applies coupons and builds
the payment widget options. A successful payment moves the order to
``In Progress``.
"""

import logging
from typing import Any, Dict, Optional

from app.auth import User
from app.libs.currency import coupon_discount, discounted_price, format_inr
from app.libs.document_store import SERVER_TIMESTAMP, DocumentStore, DocumentStoreError, get_document_store
from app.libs.models import CouponType, OrderStatus
from app.libs.quiz import HANDOFFS_COLLECTION, ORDERS_COLLECTION
from app.libs.settings import API_KEYS_DOCUMENT, get_settings

logger = logging.getLogger("stylo.checkout")

COUPONS_COLLECTION = "coupons"
PAYMENT_GATEWAY = "Razorpay"


class CheckoutError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class CheckoutSession:
    """Checkout state for one handoff record."""

    def __init__(self, user: User, handoff: Dict[str, Any], store: Optional[DocumentStore] = None):
        if not handoff or not handoff.get("price") or not handoff.get("summary"):
            raise CheckoutError("No project data found in your session.", status_code=404)
        self.user = user
        self.handoff = handoff
        self.store = store or get_document_store()
        self.base_price = handoff["price"]
        self.applied_coupon: Optional[Dict[str, Any]] = None
        self.coupon_status: Optional[str] = None
        self.completed = False

    @classmethod
    async def load(cls, user: User, store: Optional[DocumentStore] = None) -> "CheckoutSession":
        """Open the checkout for the user's pending handoff."""
        store = store or get_document_store()
        snapshot = await store.get(f"{HANDOFFS_COLLECTION}/{user.sub}")
        if not snapshot.exists:
            raise CheckoutError("No project data found in your session.", status_code=404)
        return cls(user, snapshot.data, store)

    @property
    def order_id(self) -> str:
        return self.handoff["orderId"]

    @property
    def discount(self) -> float:
        return coupon_discount(self.base_price, self.applied_coupon)

    @property
    def final_price(self) -> float:
        return discounted_price(self.base_price, self.applied_coupon)

    async def apply_coupon(self, code: str) -> bool:
        """
        Look up and apply a coupon.

        Returns:
            True when the coupon was applied; ``coupon_status`` carries the
            message to show either way
        """
        code = (code or "").strip().upper()
        if not code:
            self.coupon_status = "Please enter a code."
            return False
        try:
            matches = await self.store.query(COUPONS_COLLECTION, where=[("code", "==", code)], limit=1)
        except DocumentStoreError as e:
            logger.error("Error validating coupon: %s", e)
            self.coupon_status = "Could not validate coupon. Try again."
            return False
        if not matches:
            self.applied_coupon = None
            self.coupon_status = "Invalid coupon code."
            return False
        coupon = matches[0].data
        if not coupon.get("isActive"):
            self.applied_coupon = None
            self.coupon_status = "This coupon is currently inactive."
            return False
        self.applied_coupon = {
            "code": coupon["code"],
            "type": CouponType(coupon.get("type", CouponType.FLAT.value)).value,
            "value": coupon.get("value", 0),
        }
        self.coupon_status = f"Success! '{coupon['code']}' applied."
        return True

    def remove_coupon(self) -> None:
        self.applied_coupon = None
        self.coupon_status = "Coupon removed."

    async def razorpay_key(self) -> Optional[str]:
        """Key saved from the admin dashboard, else the environment's."""
        try:
            snapshot = await self.store.get(API_KEYS_DOCUMENT)
        except DocumentStoreError as e:
            logger.warning("Could not read payment settings: %s", e)
        else:
            if snapshot.exists and snapshot.data.get("razorpayKeyId"):
                return snapshot.data["razorpayKeyId"]
        return get_settings().razorpay_key_id

    async def payment_options(self) -> Dict[str, Any]:
        """Options for the payment widget (amount in paise)."""
        settings = get_settings()
        contact = self.handoff.get("contact") or {}
        return {
            "key": await self.razorpay_key(),
            "amount": int(round(self.final_price * 100)),
            "currency": settings.payment_currency,
            "name": settings.merchant_name,
            "description": f"Payment for {self.handoff['summary'][0]['text']}",
            "prefill": {
                "name": contact.get("name"),
                "email": contact.get("email"),
                "contact": contact.get("whatsapp"),
            },
            "notes": {"firebase_order_id": self.order_id},
            "theme": {"color": "#007BFF"},
        }

    async def payment_succeeded(self, payment_id: str) -> Dict[str, Any]:
        """Record a successful payment on the order and clear the handoff."""
        update: Dict[str, Any] = {
            "status": OrderStatus.IN_PROGRESS.value,
            "paymentDetails": {
                "paymentId": payment_id,
                "gateway": PAYMENT_GATEWAY,
                "paidAt": SERVER_TIMESTAMP,
            },
        }
        if self.applied_coupon:
            update["finalPrice"] = self.final_price
            update["appliedCoupon"] = dict(self.applied_coupon)
        try:
            await self.store.update(f"{ORDERS_COLLECTION}/{self.order_id}", update)
        except DocumentStoreError as e:
            logger.error("Failed to update order %s after payment: %s", self.order_id, e)
            raise CheckoutError(f"Payment received but order {self.order_id} could not be updated.", 500)
        await self.store.delete(f"{HANDOFFS_COLLECTION}/{self.user.sub}")
        self.completed = True
        logger.info("Order %s paid with %s", self.order_id, payment_id)
        return update

    def view(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "summary": self.handoff["summary"],
            "subtotal": format_inr(self.base_price),
            "discount": f"- {format_inr(self.discount)}" if self.discount > 0 else None,
            "total": format_inr(self.final_price),
            "final_price": self.final_price,
            "applied_coupon": self.applied_coupon,
            "coupon_status": self.coupon_status,
        }


_sessions: Dict[str, CheckoutSession] = {}


async def get_checkout(user: User, store: Optional[DocumentStore] = None) -> CheckoutSession:
    """Checkout for the user's current handoff, reopened when the handoff changed."""
    session = _sessions.get(user.sub)
    store = store or get_document_store()
    snapshot = await store.get(f"{HANDOFFS_COLLECTION}/{user.sub}")
    if session is not None and snapshot.exists and snapshot.data.get("orderId") == session.order_id:
        return session
    if not snapshot.exists:
        _sessions.pop(user.sub, None)
        raise CheckoutError("No project data found in your session.", status_code=404)
    session = CheckoutSession(user, snapshot.data, store)
    _sessions[user.sub] = session
    return session


def end_checkout(user_id: str) -> None:
    _sessions.pop(user_id, None)
