"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from leaddialer.api.v1.endpoints import (
    webhooks,
    admin,
    operator,
    leads,
    calls,
)

api_router = APIRouter()

# Provider callbacks
api_router.include_router(webhooks.router)

# Control surface and operator console
api_router.include_router(admin.router)
api_router.include_router(operator.router)
api_router.include_router(leads.router)
api_router.include_router(calls.router)
