import uuid
from typing import Optional
from fastapi import HTTPException, status


class OrderPlacementError(Exception):
    """Raised inside the order transaction; converted to a failed PlaceOrderResult at the boundary."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, product_id: Optional[uuid.UUID] = None, available: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.product_id = product_id
        self.available = available


class OrderValidationError(OrderPlacementError):
    status_code = status.HTTP_400_BAD_REQUEST


class ProductNotFound(OrderPlacementError):
    def __init__(self, product_id: uuid.UUID):
        super().__init__(f"Product not found: {product_id}", product_id=product_id)


class ProductUnavailable(OrderPlacementError):
    def __init__(self, name: str, product_id: uuid.UUID):
        super().__init__(f"{name} is no longer available.", product_id=product_id, available=0)


class VariantNotFound(OrderPlacementError):
    def __init__(self, variant_id: uuid.UUID, product_id: uuid.UUID):
        super().__init__(f"Variant not found: {variant_id}", product_id=product_id)


class InsufficientStock(OrderPlacementError):
    def __init__(self, name: str, product_id: uuid.UUID, available: int):
        super().__init__(f"Insufficient stock for {name}. Only {available} available.",
                         product_id=product_id, available=available)


class CouponAlreadyUsed(OrderPlacementError):
    def __init__(self):
        super().__init__("Coupon has already been used")


class OrderNotFound(HTTPException):
    def __init__(self, order_id: uuid.UUID):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order not found: {order_id}")


class InvalidStatusTransition(HTTPException):
    def __init__(self, old: str, new: str, *, final: bool = False):
        detail = (f"Order is already {old} and its status can no longer change" if final
                  else f"Invalid order status transition from {old} to {new}")
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
        self.old = old
        self.new = new
