from govsync.api.routes.health import router as health_router
from govsync.api.routes.notifications import router as notifications_router
from govsync.api.routes.refresh import router as refresh_router
from govsync.api.routes.stats import router as stats_router

__all__ = ["health_router", "notifications_router", "refresh_router", "stats_router"]
