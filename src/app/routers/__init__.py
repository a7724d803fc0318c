# Routers package
from . import (
    admin_router,
    payment_router,
    webhook_router,
)

__all__ = [
    "admin_router",
    "payment_router",
    "webhook_router",
]
