"""Checkout API - order summary, coupons and the payment callback."""

from fastapi import APIRouter, HTTPException

from app.auth import AuthorizedUser
from app.libs.checkout import CheckoutError, end_checkout, get_checkout
from app.libs.models import ApplyCouponRequest, PaymentSuccess

router = APIRouter()


async def _session(user):
    try:
        return await get_checkout(user)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/checkout")
async def summary(user: AuthorizedUser):
    return (await _session(user)).view()


@router.post("/checkout/coupon")
async def apply_coupon(body: ApplyCouponRequest, user: AuthorizedUser):
    session = await _session(user)
    applied = await session.apply_coupon(body.code)
    return {"applied": applied, **session.view()}


@router.delete("/checkout/coupon")
async def remove_coupon(user: AuthorizedUser):
    session = await _session(user)
    session.remove_coupon()
    return session.view()


@router.get("/checkout/payment-options")
async def payment_options(user: AuthorizedUser):
    """Options the payment widget is opened with; ``amount`` is in paise."""
    return await (await _session(user)).payment_options()


@router.post("/checkout/payment-success")
async def payment_success(body: PaymentSuccess, user: AuthorizedUser):
    session = await _session(user)
    try:
        await session.payment_succeeded(body.payment_id)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    end_checkout(user.sub)
    return {
        "success": True,
        "order_id": session.order_id,
        "message": "Payment successful! Your project is now in progress.",
        "redirect": "/dashboard",
    }
