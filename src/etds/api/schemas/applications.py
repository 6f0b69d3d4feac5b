"""Pydantic schemas for the application workflow API.

These schemas define the request/response models for application intake,
agency verification, ministry decisions and print bookkeeping.

Required workflow fields (rejection reason, remarks, agency list) are
deliberately optional here: the workflow services validate them and report
the offending field with a uniform error body.
"""

from __future__ import annotations

# NOTE: date, datetime, Decimal and UUID must remain at runtime for Pydantic validation
from datetime import date, datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Literal
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field, field_validator

from etds.db.models.base import Agency, ApplicationStatus  # noqa: TC001


def normalize_cnic(value: str) -> str:
    """Normalize a CNIC ("12345-1234567-1" or 13 digits) to its 13 digits."""
    digits = value.strip().replace("-", "")
    if len(digits) != 13 or not digits.isdigit():
        msg = "citizen_id must be a 13-digit CNIC (dashes allowed)"
        raise ValueError(msg)
    return digits


# -----------------------------------------------------------------------------
# Intake Schemas
# -----------------------------------------------------------------------------


class ApplicationCreateRequest(BaseModel):
    """Citizen details captured by a mission operator.

    Creates the application in DRAFT, which is the ministry's intake queue.
    """

    citizen_id: str = Field(..., description="13-digit CNIC, dashes allowed")
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    father_name: str = Field(..., min_length=1, max_length=100)
    mother_name: str = Field(..., min_length=1, max_length=100)
    gender: str | None = Field(None, max_length=100)
    date_of_birth: date
    nationality: str | None = Field(None, max_length=100)
    birth_country: str | None = Field(None, max_length=100)
    birth_city: str | None = Field(None, max_length=100)
    profession: str = Field(..., min_length=1, max_length=100)
    pakistan_city: str = Field(..., min_length=1, max_length=100)
    pakistan_address: str = Field(..., min_length=1, max_length=200)
    height: str = Field(..., min_length=1, max_length=20)
    color_of_eyes: str = Field(..., min_length=1, max_length=30)
    color_of_hair: str = Field(..., min_length=1, max_length=30)
    departure_date: date
    transport_mode: str = Field(..., min_length=1, max_length=50)
    investor: str | None = Field(None, max_length=255)
    requested_by: str | None = Field(None, max_length=255)
    reason_for_deport: str | None = None
    amount: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    is_fia_blacklist: bool = False
    remarks: str | None = None
    region: str | None = Field(
        None,
        max_length=100,
        description="Routing region; defaults to the caller's region claim",
    )

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("citizen_id")
    @classmethod
    def validate_citizen_id(cls, v: str) -> str:
        return normalize_cnic(v)


class ApplicationUpdateRequest(BaseModel):
    """Partial edit of citizen details while the application is a draft."""

    citizen_id: str | None = None
    first_name: str | None = Field(None, min_length=1, max_length=50)
    last_name: str | None = Field(None, min_length=1, max_length=50)
    father_name: str | None = Field(None, min_length=1, max_length=100)
    mother_name: str | None = Field(None, min_length=1, max_length=100)
    gender: str | None = Field(None, max_length=100)
    date_of_birth: date | None = None
    nationality: str | None = Field(None, max_length=100)
    birth_country: str | None = Field(None, max_length=100)
    birth_city: str | None = Field(None, max_length=100)
    profession: str | None = Field(None, min_length=1, max_length=100)
    pakistan_city: str | None = Field(None, min_length=1, max_length=100)
    pakistan_address: str | None = Field(None, min_length=1, max_length=200)
    height: str | None = Field(None, min_length=1, max_length=20)
    color_of_eyes: str | None = Field(None, min_length=1, max_length=30)
    color_of_hair: str | None = Field(None, min_length=1, max_length=30)
    departure_date: date | None = None
    transport_mode: str | None = Field(None, min_length=1, max_length=50)
    investor: str | None = Field(None, max_length=255)
    requested_by: str | None = Field(None, max_length=255)
    reason_for_deport: str | None = None
    amount: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    is_fia_blacklist: bool | None = None
    remarks: str | None = None
    region: str | None = Field(None, max_length=100)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("citizen_id")
    @classmethod
    def validate_citizen_id(cls, v: str | None) -> str | None:
        return normalize_cnic(v) if v is not None else None


# -----------------------------------------------------------------------------
# Application Responses
# -----------------------------------------------------------------------------


class AgencyRemarkResponse(BaseModel):
    """One agency's verification response."""

    agency: Agency
    remarks: str
    submitted_at: datetime
    submitted_by_id: str
    attachment_filename: str | None = None
    has_attachment: bool = False


class ApplicationResponse(BaseModel):
    """Full application details."""

    application_id: UUID
    status: ApplicationStatus
    created_at: datetime
    updated_at: datetime
    created_by_id: str
    region: str | None = None

    citizen_id: str
    first_name: str
    last_name: str
    father_name: str
    mother_name: str
    gender: str | None = None
    date_of_birth: date
    nationality: str | None = None
    birth_country: str | None = None
    birth_city: str | None = None
    profession: str
    pakistan_city: str
    pakistan_address: str
    height: str
    color_of_eyes: str
    color_of_hair: str
    departure_date: date
    transport_mode: str
    investor: str | None = None
    requested_by: str | None = None
    reason_for_deport: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    is_fia_blacklist: bool = False
    remarks: str | None = None

    assigned_agency: Agency | None = None
    pending_verification_agencies: list[str] = Field(default_factory=list)
    verification_completed_agencies: list[str] = Field(default_factory=list)
    has_verification_document: bool = False
    verification_remarks: str | None = None
    verification_sent_at: datetime | None = None
    verification_completed_at: datetime | None = None
    agency_remarks: list[AgencyRemarkResponse] = Field(default_factory=list)

    rejection_reason: str | None = None
    blacklist_check_passed: bool | None = None
    blacklist_reason: str | None = None
    blacklisted_at: datetime | None = None
    etd_issue_date: date | None = None
    etd_expiry_date: date | None = None
    reviewed_by_id: str | None = None
    reviewed_at: datetime | None = None

    is_printed: bool = False
    printed_at: datetime | None = None
    sheet_no: str | None = None


class ApplicationSummary(BaseModel):
    """Summary response for listings."""

    application_id: UUID
    status: ApplicationStatus
    citizen_id: str
    full_name: str
    region: str | None = None
    assigned_agency: Agency | None = None
    pending_verification_agencies: list[str] = Field(default_factory=list)
    is_printed: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApplicationListResponse(BaseModel):
    """Paginated listing."""

    items: list[ApplicationSummary]
    total: int
    offset: int = 0
    limit: int = 50


class AllowedActionsResponse(BaseModel):
    """Actions the caller may perform on an application right now."""

    application_id: UUID
    status: ApplicationStatus
    actions: list[str]


# -----------------------------------------------------------------------------
# Workflow Requests
# -----------------------------------------------------------------------------


class SendToAgencyRequest(BaseModel):
    """Legacy single-agency routing."""

    region: str | None = Field(
        None, description="Region to route by; defaults to the application's region"
    )

    model_config = ConfigDict(extra="forbid")


class RemarksRequest(BaseModel):
    """Body carrying free-text remarks (agency reject, ministry reject, blacklist)."""

    remarks: str | None = None
    agency: str | None = Field(None, description="Agency acted for (admin callers only)")

    model_config = ConfigDict(extra="forbid")


class ReviewRequest(BaseModel):
    """Structured ministry review."""

    approved: bool
    black_list_check: bool | None = None
    rejection_reason: str | None = None
    etd_issue_date: date | None = None
    etd_expiry_date: date | None = None

    model_config = ConfigDict(extra="forbid")


class StatusUpdateRequest(BaseModel):
    """Ministry status update, kept for clients of the older endpoint."""

    status: Literal["APPROVED", "REJECTED"]
    rejection_reason: str | None = None
    black_list_check: bool | None = None
    etd_issue_date: date | None = None
    etd_expiry_date: date | None = None

    model_config = ConfigDict(extra="forbid")


class MinistryApproveRequest(BaseModel):
    """Legacy ministry approval."""

    black_list_check: bool | None = None
    etd_issue_date: date | None = None
    etd_expiry_date: date | None = None

    model_config = ConfigDict(extra="forbid")


class PrintRequest(BaseModel):
    """Print-and-issue of an approved application."""

    sheet_no: str | None = Field(None, max_length=100)

    model_config = ConfigDict(extra="forbid")


# -----------------------------------------------------------------------------
# Audit Schemas
# -----------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    """One entry of an application's approval history."""

    seq_no: int
    action: str
    actor_id: str
    actor_role: str
    from_status: str | None = None
    to_status: str
    summary: dict | None = None
    created_at: datetime


class ChainVerificationResponse(BaseModel):
    """Result of verifying the audit chain."""

    valid: bool
    checked_records: int
    first_seq_no: int | None = None
    last_seq_no: int | None = None
    errors: list[str] = Field(default_factory=list)
