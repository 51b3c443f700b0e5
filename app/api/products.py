from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_admin_user
from app.models.schemas import ProductIn, ProductUpdate
from app.services import products_service
from app.utils.serializers import serialize_doc

router = APIRouter()


@router.get("")
def list_products(featured: Optional[bool] = None, active: Optional[bool] = Query(None, alias="status")):
    items = products_service.list_products(featured=featured, active=active)
    return {"success": True, "data": [serialize_doc(p) for p in items]}


@router.get("/{product_id}")
def get_product(product_id: str):
    return {"success": True, "product": serialize_doc(products_service.get_product(product_id))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductIn, admin=Depends(get_admin_user)):
    product = products_service.create_product(payload)
    return {"success": True, "message": "Product created", "product": serialize_doc(product)}


@router.patch("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin=Depends(get_admin_user)):
    product = products_service.update_product(product_id, payload)
    return {"success": True, "product": serialize_doc(product)}


@router.delete("/{product_id}")
def delete_product(product_id: str, admin=Depends(get_admin_user)):
    deleted = products_service.delete_product(product_id)
    return {"success": True, "message": "Product deleted", "deletedId": deleted}
