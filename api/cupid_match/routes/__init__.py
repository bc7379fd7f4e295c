from fastapi import APIRouter, FastAPI

from .admin import router as admin_router
from .cupid import router as cupid_router
from .match import router as match_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(admin_router, tags=["admin"])
    app.include_router(cupid_router, tags=["cupid"])
    app.include_router(match_router, tags=["matches"])


__all__ = ["include_modular_routers", "APIRouter"]
