"""Orders API - a customer's own orders, resuming payment, update requests."""

from fastapi import APIRouter, HTTPException

from app.auth import AuthorizedUser
from app.libs.customer_orders import OrderError, list_orders, request_update, resume_payment
from app.libs.models import UpdateRequestCreate

router = APIRouter()


@router.get("/orders")
async def my_orders(user: AuthorizedUser):
    return await list_orders(user)


@router.post("/orders/{order_id}/pay")
async def pay_now(order_id: str, user: AuthorizedUser):
    """Prepare checkout for an order that was saved without paying."""
    try:
        handoff = await resume_payment(user, order_id)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"handoff": handoff, "redirect": "/checkout"}


@router.post("/orders/{order_id}/update-requests")
async def create_update_request(order_id: str, body: UpdateRequestCreate, user: AuthorizedUser):
    try:
        request_id = await request_update(user, order_id, body.text)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"id": request_id, "message": "Request sent successfully!"}
