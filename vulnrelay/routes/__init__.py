"""API routers for VulnRelay."""

from fastapi import APIRouter

from vulnrelay.routes import vulnerabilities

api_router = APIRouter()

api_router.include_router(vulnerabilities.router, tags=["vulnerabilities"])

__all__ = ["api_router"]
