"""
API v1 package initialization.

Routers for the customer, owner and driver surfaces, business settings and
the WebSocket live views.
"""

from waterline.api.v1.driver import router as driver_router
from waterline.api.v1.live import router as live_router
from waterline.api.v1.orders import router as orders_router
from waterline.api.v1.owner import router as owner_router
from waterline.api.v1.settings import router as settings_router

__all__ = [
    "driver_router",
    "live_router",
    "orders_router",
    "owner_router",
    "settings_router",
]
