from typing import Dict

LOW_STOCK_THRESHOLD = 5


def stock_status_label(stock: int) -> Dict[str, str]:
    if stock <= 0:
        return {"label": "Out of Stock", "variant": "destructive"}
    if stock <= 5:
        return {"label": f"Only {stock} left", "variant": "warning"}
    if stock <= 10:
        return {"label": f"{stock} in stock", "variant": "default"}
    return {"label": "In Stock", "variant": "default"}


def is_low_stock(stock: int, threshold: int = LOW_STOCK_THRESHOLD) -> bool:
    return 0 < stock <= threshold


def has_stock_conflict(cart_quantity: int, available_stock: int) -> bool:
    return cart_quantity > available_stock
