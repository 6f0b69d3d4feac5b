"""SQLAlchemy ORM models for the ETD service.

This package contains all database models organized by domain:
- base: Common metadata, column types, and workflow enums
- applications: Applications and per-agency verification remarks
- audit: Hash-chained audit log records
"""

from etds.db.models.applications import AgencyRemark, Application
from etds.db.models.audit import AuditLogRecord
from etds.db.models.base import Agency, ApplicationStatus, Base, UserRole, metadata

__all__ = [
    "Agency",
    "AgencyRemark",
    "Application",
    "ApplicationStatus",
    "AuditLogRecord",
    "Base",
    "UserRole",
    "metadata",
]
