"""Pydantic schemas for the ETDS API."""

from etds.api.schemas.applications import (
    AgencyRemarkResponse,
    AllowedActionsResponse,
    ApplicationCreateRequest,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationSummary,
    ApplicationUpdateRequest,
    AuditEntryResponse,
    ChainVerificationResponse,
    MinistryApproveRequest,
    PrintRequest,
    RemarksRequest,
    ReviewRequest,
    SendToAgencyRequest,
    StatusUpdateRequest,
)

__all__ = [
    "AgencyRemarkResponse",
    "AllowedActionsResponse",
    "ApplicationCreateRequest",
    "ApplicationListResponse",
    "ApplicationResponse",
    "ApplicationSummary",
    "ApplicationUpdateRequest",
    "AuditEntryResponse",
    "ChainVerificationResponse",
    "MinistryApproveRequest",
    "PrintRequest",
    "RemarksRequest",
    "ReviewRequest",
    "SendToAgencyRequest",
    "StatusUpdateRequest",
]
