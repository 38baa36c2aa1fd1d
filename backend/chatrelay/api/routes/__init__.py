# API Routes Module
from chatrelay.api.routes import (
    auth,
    billing,
    webhooks,
    access,
)

__all__ = [
    "auth",
    "billing",
    "webhooks",
    "access",
]
