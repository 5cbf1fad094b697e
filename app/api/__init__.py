from app.api.routes.auth import router as auth_router
from app.api.routes.users import router as users_router
from app.api.routes.devices import router as devices_router
from app.api.routes.assignments import router as assignments_router

__all__ = ["auth_router", "users_router", "devices_router", "assignments_router"]
