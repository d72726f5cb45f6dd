# API Routes Module
from shyftcut.api.routes import (
    admin,
    subscriptions,
    usage,
)

__all__ = [
    "admin",
    "subscriptions",
    "usage",
]
