"""Versioned API routing for clipvault."""

from fastapi import APIRouter

from . import routes_files, routes_ingest, routes_notifications, routes_system


def get_api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")
    router.include_router(routes_system.router)
    router.include_router(routes_files.router)
    router.include_router(routes_ingest.router)
    router.include_router(routes_notifications.router)
    return router


__all__ = ["get_api_router"]
