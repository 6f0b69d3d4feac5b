"""Applications API router.

Intake, reads, ministry decisions and print bookkeeping. Every endpoint
requires a verified caller; what the caller may do is decided by the
workflow services, which raise typed errors the error middleware maps to
HTTP statuses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from etds.api.dependencies import CurrentIdentity, DbSession, Workflow
from etds.api.schemas.applications import (
    AgencyRemarkResponse,
    AllowedActionsResponse,
    ApplicationCreateRequest,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationSummary,
    ApplicationUpdateRequest,
    AuditEntryResponse,
    MinistryApproveRequest,
    PrintRequest,
    RemarksRequest,
    ReviewRequest,
    StatusUpdateRequest,
)
from etds.db.models.base import ApplicationStatus, UserRole
from etds.services.applications import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ApplicationService
from etds.services.audit_log import AuditLogService
from etds.services.authz import allowed_actions
from etds.services.decision import Decision, DecisionService
from etds.services.errors import ForbiddenError

if TYPE_CHECKING:
    from etds.db.models.applications import Application

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/applications",
    tags=["applications"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Action not permitted for this role and status"},
        404: {"description": "Application not found"},
        409: {"description": "Invalid transition or concurrent update"},
        422: {"description": "Missing or invalid field"},
    },
)


# -----------------------------------------------------------------------------
# Intake and reads
# -----------------------------------------------------------------------------


@router.post(
    "",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an application",
    description="Creates an application in DRAFT, the ministry's intake queue.",
)
async def create_application(
    request: ApplicationCreateRequest,
    identity: CurrentIdentity,
    db: DbSession,
) -> ApplicationResponse:
    service = ApplicationService(db)
    application = await service.create(identity.to_actor(), request.model_dump())
    await db.commit()
    return application_to_response(application)


@router.get(
    "",
    response_model=ApplicationListResponse,
    summary="List applications",
    description="Lists applications visible to the caller, newest first.",
)
async def list_applications(
    identity: CurrentIdentity,
    db: DbSession,
    status_filter: Annotated[
        list[ApplicationStatus] | None,
        Query(alias="status", description="Filter by status (repeatable)"),
    ] = None,
    region: Annotated[str | None, Query(description="Filter by region")] = None,
    search: Annotated[str | None, Query(description="Name or CNIC")] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
) -> ApplicationListResponse:
    service = ApplicationService(db)
    page = await service.list_applications(
        identity.to_actor(),
        statuses=status_filter,
        region=region,
        search=search,
        offset=offset,
        limit=limit,
    )
    return ApplicationListResponse(
        items=[ApplicationSummary.model_validate(a) for a in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/stats", summary="Count applications by status")
async def application_stats(identity: CurrentIdentity, db: DbSession) -> dict[str, int]:
    return await ApplicationService(db).stats(identity.to_actor())


@router.get(
    "/ready-for-print",
    response_model=list[ApplicationSummary],
    summary="Approved applications not yet printed",
)
async def ready_for_print(identity: CurrentIdentity, db: DbSession) -> list[ApplicationSummary]:
    applications = await ApplicationService(db).ready_for_print(identity.to_actor())
    return [ApplicationSummary.model_validate(a) for a in applications]


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
) -> ApplicationResponse:
    application = await ApplicationService(db).get(identity.to_actor(), application_id)
    return application_to_response(application)


@router.put(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Edit a draft",
)
async def update_application(
    application_id: UUID,
    request: ApplicationUpdateRequest,
    identity: CurrentIdentity,
    db: DbSession,
) -> ApplicationResponse:
    service = ApplicationService(db)
    application = await service.update_draft(
        identity.to_actor(),
        application_id,
        request.model_dump(exclude_unset=True),
    )
    await db.commit()
    return application_to_response(application)


@router.get(
    "/{application_id}/actions",
    response_model=AllowedActionsResponse,
    summary="Actions available to the caller",
)
async def application_actions(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
) -> AllowedActionsResponse:
    service = ApplicationService(db)
    actor = identity.to_actor()
    application = await service.get(actor, application_id)
    actions = allowed_actions(actor, application)
    return AllowedActionsResponse(
        application_id=application.application_id,
        status=application.status,
        actions=sorted(a.value for a in actions),
    )


@router.get(
    "/{application_id}/history",
    response_model=list[AuditEntryResponse],
    summary="Approval history",
)
async def application_history(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
) -> list[AuditEntryResponse]:
    actor = identity.to_actor()
    if actor.role not in (UserRole.MINISTRY, UserRole.ADMIN):
        raise ForbiddenError(actor.role, "view history")
    await ApplicationService(db).get(actor, application_id)
    entries = await AuditLogService(db).history(application_id)
    return [
        AuditEntryResponse(
            seq_no=e.seq_no,
            action=e.action,
            actor_id=e.actor_id,
            actor_role=e.actor_role,
            from_status=e.from_status,
            to_status=e.to_status,
            summary=e.summary,
            created_at=e.created_at,
        )
        for e in entries
    ]


# -----------------------------------------------------------------------------
# Ministry decisions
# -----------------------------------------------------------------------------


@router.patch(
    "/{application_id}/review",
    response_model=ApplicationResponse,
    summary="Structured ministry review",
)
async def review_application(
    application_id: UUID,
    request: ReviewRequest,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.decide(
        identity.to_actor(),
        application_id,
        Decision.APPROVE if request.approved else Decision.REJECT,
        rejection_reason=request.rejection_reason,
        blacklist_check_passed=request.black_list_check,
        etd_issue_date=request.etd_issue_date,
        etd_expiry_date=request.etd_expiry_date,
    )
    await db.commit()
    return application_to_response(application)


@router.patch(
    "/{application_id}/status",
    response_model=ApplicationResponse,
    summary="Ministry status update",
)
async def update_status(
    application_id: UUID,
    request: StatusUpdateRequest,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.decide(
        identity.to_actor(),
        application_id,
        Decision.APPROVE if request.status == "APPROVED" else Decision.REJECT,
        rejection_reason=request.rejection_reason,
        blacklist_check_passed=request.black_list_check,
        etd_issue_date=request.etd_issue_date,
        etd_expiry_date=request.etd_expiry_date,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/ministry-approve",
    response_model=ApplicationResponse,
    summary="Ministry approval",
)
async def ministry_approve(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
    request: MinistryApproveRequest | None = None,
) -> ApplicationResponse:
    request = request or MinistryApproveRequest()
    service = DecisionService(db, settings=workflow)
    application = await service.decide(
        identity.to_actor(),
        application_id,
        Decision.APPROVE,
        blacklist_check_passed=request.black_list_check,
        etd_issue_date=request.etd_issue_date,
        etd_expiry_date=request.etd_expiry_date,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/ministry-reject",
    response_model=ApplicationResponse,
    summary="Ministry rejection",
)
async def ministry_reject(
    application_id: UUID,
    request: RemarksRequest,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.decide(
        identity.to_actor(),
        application_id,
        Decision.REJECT,
        rejection_reason=request.remarks,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/blacklist",
    response_model=ApplicationResponse,
    summary="Blacklist an application",
)
async def blacklist_application(
    application_id: UUID,
    request: RemarksRequest,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.blacklist(
        identity.to_actor(), application_id, remarks=request.remarks
    )
    await db.commit()
    return application_to_response(application)


# -----------------------------------------------------------------------------
# Print bookkeeping
# -----------------------------------------------------------------------------


@router.post(
    "/{application_id}/print",
    response_model=ApplicationResponse,
    summary="Print and issue an approved application",
)
async def print_application(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
    request: PrintRequest | None = None,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.issue(
        identity.to_actor(),
        application_id,
        sheet_no=request.sheet_no if request else None,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/mark-printed",
    response_model=ApplicationResponse,
    summary="Mark as printed",
)
async def mark_printed(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = DecisionService(db, settings=workflow)
    application = await service.mark_printed(identity.to_actor(), application_id)
    await db.commit()
    return application_to_response(application)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def application_to_response(application: Application) -> ApplicationResponse:
    """Convert an Application model to its response schema."""
    return ApplicationResponse(
        application_id=application.application_id,
        status=application.status,
        created_at=application.created_at,
        updated_at=application.updated_at,
        created_by_id=application.created_by_id,
        region=application.region,
        citizen_id=application.citizen_id,
        first_name=application.first_name,
        last_name=application.last_name,
        father_name=application.father_name,
        mother_name=application.mother_name,
        gender=application.gender,
        date_of_birth=application.date_of_birth,
        nationality=application.nationality,
        birth_country=application.birth_country,
        birth_city=application.birth_city,
        profession=application.profession,
        pakistan_city=application.pakistan_city,
        pakistan_address=application.pakistan_address,
        height=application.height,
        color_of_eyes=application.color_of_eyes,
        color_of_hair=application.color_of_hair,
        departure_date=application.departure_date,
        transport_mode=application.transport_mode,
        investor=application.investor,
        requested_by=application.requested_by,
        reason_for_deport=application.reason_for_deport,
        amount=application.amount,
        currency=application.currency,
        is_fia_blacklist=bool(application.is_fia_blacklist),
        remarks=application.remarks,
        assigned_agency=application.assigned_agency,
        pending_verification_agencies=list(application.pending_verification_agencies or []),
        verification_completed_agencies=list(application.verification_completed_agencies or []),
        has_verification_document=application.verification_document_ref is not None,
        verification_remarks=application.verification_remarks,
        verification_sent_at=application.verification_sent_at,
        verification_completed_at=application.verification_completed_at,
        agency_remarks=[
            AgencyRemarkResponse(
                agency=r.agency,
                remarks=r.remarks,
                submitted_at=r.submitted_at,
                submitted_by_id=r.submitted_by_id,
                attachment_filename=r.attachment_filename,
                has_attachment=r.attachment_ref is not None,
            )
            for r in application.agency_remarks
        ],
        rejection_reason=application.rejection_reason,
        blacklist_check_passed=application.blacklist_check_passed,
        blacklist_reason=application.blacklist_reason,
        blacklisted_at=application.blacklisted_at,
        etd_issue_date=application.etd_issue_date,
        etd_expiry_date=application.etd_expiry_date,
        reviewed_by_id=application.reviewed_by_id,
        reviewed_at=application.reviewed_at,
        is_printed=bool(application.is_printed),
        printed_at=application.printed_at,
        sheet_no=application.sheet_no,
    )
