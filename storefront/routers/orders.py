"""
Checkout Router

Customer checkout endpoints. The payment screenshot is uploaded in the same
multipart request as the order.
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from storefront.auth import SessionUser, verify_user
from storefront.errors import ERROR_EMPTY_CART, ValidationError
from storefront.orders.pipeline import ProductSelection, Screenshot
from storefront.orders.serializer import serialize_order_for_customer
from storefront.routers.deps import get_pipeline

from .models import CartLineRequest

router = APIRouter(prefix="/api/orders", tags=["orders"])

_cart_lines = TypeAdapter(list[CartLineRequest])


async def read_screenshot(upload: Optional[UploadFile]) -> Optional[Screenshot]:
    if upload is None:
        return None
    content = await upload.read()
    return Screenshot(content=content, filename=upload.filename or "screenshot.jpg")


@router.post("")
async def create_order(
    product_id: str = Form(..., alias="productId"),
    payment_method: str = Form(..., alias="paymentMethod"),
    quantity: int = Form(1),
    coupon_code: Optional[str] = Form(None, alias="couponCode"),
    transaction_id: Optional[str] = Form(None, alias="transactionId"),
    screenshot: Optional[UploadFile] = File(None),
    user: SessionUser = Depends(verify_user),
):
    """Single-product checkout."""
    pipeline = get_pipeline()
    order = await pipeline.create_order(
        user_id=user.user_id,
        selection=ProductSelection(product_id=product_id, quantity=quantity),
        payment_method=payment_method,
        screenshot=await read_screenshot(screenshot),
        coupon_code=coupon_code,
        transaction_id=transaction_id,
    )
    return {"success": True, "order": serialize_order_for_customer(order)}


@router.post("/cart")
async def create_cart_order(
    items: str = Form(...),
    payment_method: str = Form(..., alias="paymentMethod"),
    coupon_code: Optional[str] = Form(None, alias="couponCode"),
    transaction_id: Optional[str] = Form(None, alias="transactionId"),
    screenshot: Optional[UploadFile] = File(None),
    user: SessionUser = Depends(verify_user),
):
    """
    Cart checkout. `items` is a JSON array of {productId, quantity}.

    One order is created per line; all share the uploaded screenshot.
    """
    try:
        lines = _cart_lines.validate_python(json.loads(items))
    except (json.JSONDecodeError, PydanticValidationError):
        raise ValidationError("Invalid cart items")
    if not lines:
        raise ValidationError(ERROR_EMPTY_CART)

    pipeline = get_pipeline()
    orders = await pipeline.create_cart_order(
        user_id=user.user_id,
        lines=[ProductSelection(product_id=line.product_id, quantity=line.quantity) for line in lines],
        payment_method=payment_method,
        screenshot=await read_screenshot(screenshot),
        coupon_code=coupon_code,
        transaction_id=transaction_id,
    )
    return {
        "success": True,
        "orders": [serialize_order_for_customer(order) for order in orders],
    }


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user: SessionUser = Depends(verify_user),
):
    """One of the caller's own orders; keys only once completed."""
    order = await get_pipeline().get_customer_order(order_id, user.user_id)
    return {"success": True, "data": {"order": serialize_order_for_customer(order)}}
