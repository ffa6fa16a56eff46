from fastapi import APIRouter
from freshcart.api import version_prefix
from freshcart.cart.routes import carts_router
from freshcart.common.routes import home_router
from freshcart.coupons.routes import coupons_router
from freshcart.orders.routes import orders_admin_router, orders_router
from freshcart.products.routes import prods_admin_router, prods_public_router
from freshcart.recommendations.routes import recommendations_router
from freshcart.stock.routes import stock_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(carts_router, prefix="/cart", tags=["cart"])
public_routers.include_router(orders_router, tags=["orders"])
public_routers.include_router(coupons_router, prefix="/coupons", tags=["coupons"])
public_routers.include_router(stock_router, prefix="/stock", tags=["stock"])
public_routers.include_router(recommendations_router, prefix="/recommendations", tags=["recommendations"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(prods_admin_router, prefix="/products", tags=["products-admin"])
admin_routers.include_router(orders_admin_router, prefix="/orders", tags=["orders-admin"])
