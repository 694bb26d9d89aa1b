"""Store service routers package."""

from services.store_service.routers.cart import router as cart_router
from services.store_service.routers.discounts import router as discounts_router
from services.store_service.routers.internal import router as internal_router
from services.store_service.routers.orders import router as orders_router

__all__ = [
    "cart_router",
    "discounts_router",
    "internal_router",
    "orders_router",
]
