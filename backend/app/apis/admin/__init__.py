"""Admin API - dashboard tables, order and coupon management, API keys."""

from fastapi import APIRouter, HTTPException

from app.auth import AdminUser
from app.libs.dashboard import get_admin_dashboard, order_detail
from app.libs.models import CouponCreate, CouponToggle, SettingsUpdate, StatusUpdate, UpdateRequestStatus

router = APIRouter()


@router.get("/admin/dashboard")
async def dashboard(user: AdminUser, status: str = "all", search: str = ""):
    """
    Stats, the 30-day revenue chart and every table.

    Each table comes as row dicts and as ready-made ``<tbody>`` markup.
    """
    board = await get_admin_dashboard()
    await board.settle()
    board.status_filter = status
    board.search = search
    return board.view()


@router.get("/admin/orders/{order_id}")
async def get_order(order_id: str, user: AdminUser):
    board = await get_admin_dashboard()
    order = board.find_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_detail(order)


@router.patch("/admin/orders/{order_id}/status")
async def change_order_status(order_id: str, body: StatusUpdate, user: AdminUser):
    """Schedule the status write; the new status shows up through the live feed."""
    board = await get_admin_dashboard()
    board.change_order_status(order_id, body.status.value)
    return {"scheduled": True}


@router.patch("/admin/update-requests/{request_id}/status")
async def change_update_request_status(request_id: str, body: UpdateRequestStatus, user: AdminUser):
    board = await get_admin_dashboard()
    board.change_update_request_status(request_id, body.status)
    return {"scheduled": True}


@router.post("/admin/coupons")
async def create_coupon(body: CouponCreate, user: AdminUser):
    board = await get_admin_dashboard()
    result = await board.create_coupon(body.code, body.type.value, body.value)
    if result["type"] == "error":
        raise HTTPException(status_code=400, detail=result["message"])
    return result


@router.patch("/admin/coupons/{coupon_id}")
async def toggle_coupon(coupon_id: str, body: CouponToggle, user: AdminUser):
    board = await get_admin_dashboard()
    board.toggle_coupon(coupon_id, body.is_active)
    return {"scheduled": True}


@router.delete("/admin/templates/{template_id}")
async def delete_template(template_id: str, user: AdminUser):
    board = await get_admin_dashboard()
    if not await board.delete_ai_template(template_id):
        raise HTTPException(status_code=500, detail="Failed to delete the template.")
    return {"success": True}


@router.get("/admin/settings")
async def get_settings_keys(user: AdminUser):
    board = await get_admin_dashboard()
    return await board.load_settings()


@router.put("/admin/settings")
async def save_settings_keys(body: SettingsUpdate, user: AdminUser):
    board = await get_admin_dashboard()
    result = await board.save_settings(body.razorpay_key_id, body.gemini_api_key)
    if result["type"] == "error":
        raise HTTPException(status_code=400, detail=result["message"])
    return result
