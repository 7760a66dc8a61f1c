from fastapi import APIRouter

from marfanet.api.v1.endpoints import (
    # Directory
    representatives,
    collaborators,
    # Invoice lifecycle
    invoices,
    payments,
    # Bulk imports
    imports,
    # Dashboard
    stats,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Directory ====================
api_router.include_router(
    representatives.router,
    prefix="/representatives",
    tags=["Representatives"]
)

api_router.include_router(
    collaborators.router,
    prefix="/collaborators",
    tags=["Collaborators"]
)

# ==================== Invoice Lifecycle ====================
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)

# ==================== Bulk Imports ====================
api_router.include_router(
    imports.router,
    prefix="/imports",
    tags=["Imports"]
)

# ==================== Dashboard ====================
api_router.include_router(
    stats.router,
    prefix="/stats",
    tags=["Statistics"]
)
