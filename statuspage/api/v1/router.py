from fastapi import APIRouter

from statuspage.api.v1.entities import router as entities_router
from statuspage.api.v1.health import router as health_router
from statuspage.api.v1.health_checks import router as health_checks_router
from statuspage.api.v1.incidents import router as incidents_router
from statuspage.api.v1.public import router as public_router
from statuspage.api.v1.uptime_history import router as uptime_history_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["Health"])

# Health checks
v1_router.include_router(health_checks_router, tags=["Health Checks"])
v1_router.include_router(uptime_history_router, tags=["Uptime History"])

# Incidents & maintenance
v1_router.include_router(incidents_router, tags=["Incidents"])

# Public status page
v1_router.include_router(public_router, tags=["Public"])

# Entity management (catch-all /api/{kind}/{id} routes, registered last)
v1_router.include_router(entities_router, tags=["Entities"])
