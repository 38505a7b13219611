# Routers package
from . import (
    billing_admin_router,
    stripe_router,
)

__all__ = [
    "billing_admin_router",
    "stripe_router",
]
