import pytest

from app.libs.checkout import COUPONS_COLLECTION, CheckoutError, CheckoutSession, get_checkout
from app.libs.currency import coupon_discount, discounted_price, format_inr
from app.libs.document_store import SERVER_TIMESTAMP
from app.libs.models import OrderStatus
from app.libs.quiz import HANDOFFS_COLLECTION, ORDERS_COLLECTION
from app.libs.settings import API_KEYS_DOCUMENT


class TestCurrency:
    def test_percentage_coupon(self):
        assert discounted_price(1000, {"type": "percentage", "value": 10}) == 900

    def test_flat_coupon_never_goes_negative(self):
        assert discounted_price(1000, {"type": "flat", "value": 250}) == 750
        assert discounted_price(1000, {"type": "flat", "value": 5000}) == 0

    def test_no_coupon(self):
        assert coupon_discount(1000, None) == 0
        assert discounted_price(1000, None) == 1000

    @pytest.mark.parametrize("amount,expected", [
        (0, "₹0"),
        (999, "₹999"),
        (4999, "₹4,999"),
        (123456, "₹1,23,456"),
        (12345678, "₹1,23,45,678"),
        (None, "₹0"),
    ])
    def test_indian_grouping(self, amount, expected):
        assert format_inr(amount) == expected


async def seed_order(store, user, price=1000):
    order_id = await store.add(ORDERS_COLLECTION, {
        "userId": user.sub,
        "status": OrderStatus.PENDING_PAYMENT.value,
        "estimatedPrice": price,
        "selectedTemplate": "Karma Master",
        "createdAt": SERVER_TIMESTAMP,
    })
    await store.set(f"{HANDOFFS_COLLECTION}/{user.sub}", {
        "price": price,
        "orderId": order_id,
        "summary": [{"question": "Template", "text": "Karma Master"}],
        "contact": {"name": "Asha", "email": "asha@example.com", "whatsapp": "+91 99999 00000"},
    })
    return order_id


class TestCheckoutSession:
    @pytest.mark.asyncio
    async def test_load_without_handoff(self, store, register):
        user = await register("asha@example.com")
        with pytest.raises(CheckoutError) as exc:
            await CheckoutSession.load(user, store)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_apply_percentage_coupon(self, store, register):
        user = await register("asha@example.com")
        await seed_order(store, user, price=1000)
        await store.add(COUPONS_COLLECTION, {"code": "SAVE10", "type": "percentage", "value": 10, "isActive": True})
        session = await CheckoutSession.load(user, store)

        assert await session.apply_coupon(" save10 ") is True

        assert session.final_price == 900
        assert session.coupon_status == "Success! 'SAVE10' applied."
        view = session.view()
        assert view["total"] == "₹900"
        assert view["discount"] == "- ₹100"

    @pytest.mark.asyncio
    async def test_coupon_messages(self, store, register):
        user = await register("asha@example.com")
        await seed_order(store, user)
        await store.add(COUPONS_COLLECTION, {"code": "OLD", "type": "flat", "value": 100, "isActive": False})
        session = await CheckoutSession.load(user, store)

        assert await session.apply_coupon("") is False
        assert session.coupon_status == "Please enter a code."
        assert await session.apply_coupon("MISSING") is False
        assert session.coupon_status == "Invalid coupon code."
        assert await session.apply_coupon("old") is False
        assert session.coupon_status == "This coupon is currently inactive."
        assert session.final_price == 1000

    @pytest.mark.asyncio
    async def test_payment_options_in_minor_units(self, store, register):
        user = await register("asha@example.com")
        order_id = await seed_order(store, user, price=4999)
        session = await CheckoutSession.load(user, store)

        options = await session.payment_options()

        assert options["amount"] == 499900
        assert options["currency"] == "INR"
        assert options["key"] == "rzp_test_key"
        assert options["notes"]["firebase_order_id"] == order_id
        assert options["prefill"]["contact"] == "+91 99999 00000"

    @pytest.mark.asyncio
    async def test_payment_key_saved_by_admin_wins(self, store, register):
        user = await register("asha@example.com")
        await seed_order(store, user)
        await store.set(API_KEYS_DOCUMENT, {"razorpayKeyId": "rzp_live_admin", "geminiApiKey": "g"})
        session = await CheckoutSession.load(user, store)

        assert (await session.payment_options())["key"] == "rzp_live_admin"

    @pytest.mark.asyncio
    async def test_payment_success_moves_order_in_progress(self, store, register):
        user = await register("asha@example.com")
        order_id = await seed_order(store, user, price=1000)
        await store.add(COUPONS_COLLECTION, {"code": "FLAT200", "type": "flat", "value": 200, "isActive": True})
        session = await CheckoutSession.load(user, store)
        await session.apply_coupon("FLAT200")

        await session.payment_succeeded("pay_abc")

        order = (await store.get(f"{ORDERS_COLLECTION}/{order_id}")).data
        assert order["status"] == OrderStatus.IN_PROGRESS.value
        assert order["paymentDetails"]["paymentId"] == "pay_abc"
        assert order["paymentDetails"]["gateway"] == "Razorpay"
        assert order["finalPrice"] == 800
        assert order["appliedCoupon"] == {"code": "FLAT200", "type": "flat", "value": 200}
        assert not (await store.get(f"{HANDOFFS_COLLECTION}/{user.sub}")).exists

    @pytest.mark.asyncio
    async def test_payment_without_coupon_keeps_estimated_price(self, store, register):
        user = await register("asha@example.com")
        order_id = await seed_order(store, user)
        session = await CheckoutSession.load(user, store)

        await session.payment_succeeded("pay_xyz")

        order = (await store.get(f"{ORDERS_COLLECTION}/{order_id}")).data
        assert "finalPrice" not in order and "appliedCoupon" not in order

    @pytest.mark.asyncio
    async def test_get_checkout_reuses_session_for_same_order(self, store, register):
        user = await register("asha@example.com")
        await seed_order(store, user)
        await store.add(COUPONS_COLLECTION, {"code": "SAVE10", "type": "percentage", "value": 10, "isActive": True})

        first = await get_checkout(user, store)
        await first.apply_coupon("SAVE10")
        second = await get_checkout(user, store)

        assert second is first
        assert second.final_price == 900
