from fastapi import APIRouter, Body, Depends

from app.api.deps import get_current_user
from app.services import cart_service
from app.utils.serializers import serialize_doc

router = APIRouter()


def _serialize_cart(entries):
    return [
        {"productId": str(e["productId"]), "quantity": e["quantity"], "product": serialize_doc(e["product"])}
        for e in entries
    ]


@router.get("")
def get_cart(user=Depends(get_current_user)):
    cart = cart_service.get_cart(user)
    return {"success": True, "cart": _serialize_cart(cart), "userId": user["id"]}


@router.post("")
def update_cart(payload: dict = Body(...), user=Depends(get_current_user)):
    cart = cart_service.replace_cart(user, payload.get("cart"))
    return {"success": True, "message": "Cart updated successfully", "cart": _serialize_cart(cart)}


@router.post("/merge")
def merge_cart(payload: dict = Body(...), user=Depends(get_current_user)):
    cart = cart_service.merge_cart(user, payload.get("guestCart"))
    return {"success": True, "message": "Carts merged successfully", "cart": _serialize_cart(cart)}
