"""ETDS API routers.

- applications: intake, reads, ministry decisions and print bookkeeping
- verification: agency fan-out/fan-in, the legacy agency path, documents
- audit: audit chain verification and policy snapshot (admin)
"""

from etds.api.routers.applications import router as applications_router
from etds.api.routers.audit import router as audit_router
from etds.api.routers.verification import router as verification_router

__all__ = [
    "applications_router",
    "audit_router",
    "verification_router",
]
