"""Verification API router.

Endpoints for the multi-agency fan-out/fan-in path, the legacy
single-agency path, and downloads of the verification document and
agency attachments.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import Response

from etds.api.dependencies import CurrentIdentity, DbSession, StorageClient, Workflow
from etds.api.routers.applications import application_to_response
from etds.api.schemas.applications import (
    AgencyRemarkResponse,
    ApplicationResponse,
    RemarksRequest,
    SendToAgencyRequest,
)
from etds.services.verification import UploadedFile, VerificationService

if TYPE_CHECKING:
    from etds.services.storage import ObjectMetadata

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/applications",
    tags=["verification"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Action not permitted for this role, status or agency"},
        404: {"description": "Application or document not found"},
        409: {"description": "Invalid transition, duplicate submission or concurrent update"},
        422: {"description": "Missing or invalid field"},
    },
)


async def _read_upload(upload: UploadFile | None) -> UploadedFile | None:
    """Read a multipart file part; an absent or empty part counts as no file."""
    if upload is None:
        return None
    content = await upload.read()
    if not content:
        return None
    return UploadedFile(
        filename=upload.filename,
        content=content,
        content_type=upload.content_type or "application/octet-stream",
    )


def _split_agencies(*values: list[str] | None) -> list[str]:
    """Flatten repeated and comma-separated agency form values."""
    agencies: list[str] = []
    for value in values:
        for item in value or []:
            agencies.extend(part.strip() for part in item.split(",") if part.strip())
    return agencies


def _file_response(content: bytes, metadata: ObjectMetadata, default_name: str) -> Response:
    filename = metadata.filename or default_name
    return Response(
        content=content,
        media_type=metadata.content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -----------------------------------------------------------------------------
# Fan-out / fan-in
# -----------------------------------------------------------------------------


@router.post(
    "/{application_id}/send-for-verification",
    response_model=ApplicationResponse,
    summary="Send a draft to agencies for verification",
)
async def send_for_verification(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
    workflow: Workflow,
    agencies: Annotated[
        list[str] | None, Form(description="Agency codes (repeatable or comma-separated)")
    ] = None,
    agencies_list: Annotated[list[str] | None, Form(alias="agencies[]")] = None,
    verification_document: Annotated[
        UploadFile | None, File(description="Document sent to the agencies")
    ] = None,
    remarks: Annotated[str | None, Form(description="Remarks for the agencies")] = None,
) -> ApplicationResponse:
    service = VerificationService(db, storage=storage, settings=workflow)
    application = await service.send_for_verification(
        identity.to_actor(),
        application_id,
        _split_agencies(agencies, agencies_list),
        document=await _read_upload(verification_document),
        remarks=remarks,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/submit-verification",
    response_model=ApplicationResponse,
    summary="Submit an agency's verification response",
)
async def submit_verification(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
    workflow: Workflow,
    remarks: Annotated[str | None, Form(description="Verification remarks")] = None,
    agency: Annotated[str | None, Form(description="Agency acted for (admin only)")] = None,
    attachment: Annotated[UploadFile | None, File(description="Agency report")] = None,
) -> ApplicationResponse:
    service = VerificationService(db, storage=storage, settings=workflow)
    application = await service.submit_verification(
        identity.to_actor(),
        application_id,
        remarks=remarks,
        agency=agency,
        attachment=await _read_upload(attachment),
    )
    await db.commit()
    return application_to_response(application)


# -----------------------------------------------------------------------------
# Legacy single-agency path
# -----------------------------------------------------------------------------


@router.post(
    "/{application_id}/send-to-agency",
    response_model=ApplicationResponse,
    summary="Hand a submitted application to a regional agency",
)
async def send_to_agency(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
    request: SendToAgencyRequest | None = None,
) -> ApplicationResponse:
    service = VerificationService(db, settings=workflow)
    application = await service.send_to_agency(
        identity.to_actor(),
        application_id,
        region=request.region if request else None,
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/recall",
    response_model=ApplicationResponse,
    summary="Recall an application from its agency",
)
async def recall_from_agency(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = VerificationService(db, settings=workflow)
    application = await service.recall_from_agency(identity.to_actor(), application_id)
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/agency-approve",
    response_model=ApplicationResponse,
    summary="Agency clearance",
)
async def agency_approve(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
    workflow: Workflow,
    remarks: Annotated[str | None, Form()] = None,
    agency: Annotated[str | None, Form(description="Agency acted for (admin only)")] = None,
    attachment: Annotated[UploadFile | None, File(description="Agency report")] = None,
) -> ApplicationResponse:
    service = VerificationService(db, storage=storage, settings=workflow)
    application = await service.agency_approve(
        identity.to_actor(),
        application_id,
        remarks=remarks,
        agency=agency,
        attachment=await _read_upload(attachment),
    )
    await db.commit()
    return application_to_response(application)


@router.post(
    "/{application_id}/agency-reject",
    response_model=ApplicationResponse,
    summary="Agency rejection",
)
async def agency_reject(
    application_id: UUID,
    request: RemarksRequest,
    identity: CurrentIdentity,
    db: DbSession,
    workflow: Workflow,
) -> ApplicationResponse:
    service = VerificationService(db, settings=workflow)
    application = await service.agency_reject(
        identity.to_actor(),
        application_id,
        remarks=request.remarks,
        agency=request.agency,
    )
    await db.commit()
    return application_to_response(application)


# -----------------------------------------------------------------------------
# Documents
# -----------------------------------------------------------------------------


@router.get(
    "/{application_id}/verification-document",
    summary="Download the verification document",
    response_class=Response,
)
async def download_verification_document(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
) -> Response:
    service = VerificationService(db, storage=storage)
    content, metadata = await service.verification_document(identity.to_actor(), application_id)
    logger.info(
        "Verification document downloaded",
        extra={"application_id": str(application_id), "user_id": identity.user_id},
    )
    return _file_response(content, metadata, f"verification_{application_id}")


@router.get(
    "/{application_id}/attachments",
    response_model=list[AgencyRemarkResponse],
    summary="List agency attachments",
)
async def list_attachments(
    application_id: UUID,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
) -> list[AgencyRemarkResponse]:
    service = VerificationService(db, storage=storage)
    remarks = await service.attachments(identity.to_actor(), application_id)
    return [
        AgencyRemarkResponse(
            agency=r.agency,
            remarks=r.remarks,
            submitted_at=r.submitted_at,
            submitted_by_id=r.submitted_by_id,
            attachment_filename=r.attachment_filename,
            has_attachment=True,
        )
        for r in remarks
    ]


@router.get(
    "/{application_id}/attachments/{agency}",
    summary="Download one agency's attachment",
    response_class=Response,
)
async def download_attachment(
    application_id: UUID,
    agency: str,
    identity: CurrentIdentity,
    db: DbSession,
    storage: StorageClient,
) -> Response:
    service = VerificationService(db, storage=storage)
    content, metadata = await service.agency_attachment(
        identity.to_actor(), application_id, agency
    )
    return _file_response(content, metadata, f"{agency.upper()}_{application_id}")
