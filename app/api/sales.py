from fastapi import APIRouter, Depends

from app.api.deps import get_admin_user
from app.services import sales_service

router = APIRouter()


@router.post("/orders/{order_id}/record")
def record_order_sale(order_id: str, admin=Depends(get_admin_user)):
    """Replay sales recording for an order; a no-op once it has been recorded."""
    recorded = sales_service.record_sale(order_id)
    message = "Sale recorded" if recorded else "Sale already recorded for this order"
    return {"success": True, "recorded": recorded, "message": message}
