from typing import Optional

from fastapi import APIRouter, Depends, status

from app.api.deps import get_admin_user, get_current_user
from app.models.schemas import CancelRequest, OrderCreate, StatusUpdate
from app.services import orders_service
from app.utils.serializers import serialize_order

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, user=Depends(get_current_user)):
    order = orders_service.create_order(
        user["id"], payload.items, payload.shippingAddress, payload.paymentMethod
    )
    return {"success": True, "order": serialize_order(order)}


@router.get("")
def all_orders(admin=Depends(get_admin_user)):
    return {"success": True, "data": [serialize_order(o) for o in orders_service.list_orders()]}


@router.get("/my-orders")
def my_orders(user=Depends(get_current_user)):
    orders = orders_service.list_user_orders(user["id"])
    return {"success": True, "data": [serialize_order(o) for o in orders]}


@router.get("/stats")
def stats(admin=Depends(get_admin_user)):
    return {"success": True, "data": orders_service.order_stats()}


@router.patch("/{order_id}")
def update_order_status(order_id: str, payload: StatusUpdate, admin=Depends(get_admin_user)):
    change = orders_service.update_status(
        order_id,
        payload.status,
        payload.changedBy or admin["id"],
        note=payload.note,
        tracking_number=payload.trackingNumber,
        payment_status=payload.paymentStatus,
    )
    body = {"success": True, "data": serialize_order(change.order)}
    if change.sales_recorded is not None:
        body["salesRecorded"] = change.sales_recorded
    if change.already_recorded:
        body["alreadyRecorded"] = True
    if change.sales_error:
        body["warning"] = f"Sales recording failed: {change.sales_error}"
    return body


@router.patch("/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelRequest] = None, user=Depends(get_current_user)):
    change = orders_service.cancel_order(order_id, user["id"], reason=payload.reason if payload else None)
    message = "Order cancelled successfully" if change.changed else "Order already cancelled"
    return {"success": True, "message": message, "data": serialize_order(change.order)}
