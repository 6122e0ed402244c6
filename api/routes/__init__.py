"""
PhoneBridge API Routes Package.

Example:
    from api.routes import mappings_router, webhook_router

    app.include_router(mappings_router)
    app.include_router(webhook_router)
"""

from api.routes.mappings import router as mappings_router
from api.routes.webhook import router as webhook_router


__all__ = [
    "mappings_router",
    "webhook_router",
]
