"""Contact API - public contact form."""

from fastapi import APIRouter, HTTPException

from app.libs.customer_orders import OrderError, send_contact_message
from app.libs.models import ContactMessageCreate

router = APIRouter()


@router.post("/contact")
async def contact(body: ContactMessageCreate):
    try:
        message_id = await send_contact_message(body.name, body.email, body.message)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"id": message_id, "message": "Thank you! Your message has been sent successfully."}
