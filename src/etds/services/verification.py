"""Agency verification: fan-out to many agencies, fan-in of their responses.

Two routing lineages share this service:

- Fan-out/fan-in: the ministry sends a DRAFT to a set of agencies with a
  verification document; each agency answers once; the answer that empties
  the pending set moves the application to VERIFICATION_RECEIVED.
- Legacy single agency: the ministry sends a SUBMITTED application to the
  home agency of its region; that agency approves or rejects it.

Every mutating call locks the application row, validates completely, writes
any blob, mutates, appends an audit record and flushes, in that order. A
failure at any step leaves the application as it was.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from etds.core.config import WorkflowSettings
from etds.db.models.applications import AgencyRemark
from etds.db.models.base import Agency, ApplicationStatus, UserRole
from etds.services.applications import ensure_visible, flush_or_conflict, load_application
from etds.services.audit_log import AuditLogService
from etds.services.authz import Action, agency_may_act, authorize, require_role_action
from etds.services.errors import AlreadySubmittedError, ForbiddenError, WorkflowValidationError
from etds.services.routing import (
    parse_agencies,
    parse_agency,
    resolve_actor_agency,
    resolve_home_agency,
)
from etds.services.storage import (
    ObjectNotFoundError,
    StorageError,
    agency_attachment_key,
    verification_document_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from etds.db.models.applications import Application
    from etds.services.authz import Actor
    from etds.services.storage import ObjectMetadata, ObjectStoreClient

logger = logging.getLogger(__name__)

S = ApplicationStatus


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """A file received from the caller, ready for the blob store."""

    filename: str | None
    content: bytes
    content_type: str = "application/octet-stream"


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise WorkflowValidationError(field, f"{field} is required")
    return value.strip()


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class VerificationService:
    """Fan-out/fan-in coordinator and legacy agency path.

    Example:
        service = VerificationService(session, storage=client)
        await service.send_for_verification(
            ministry,
            application_id,
            ["INTELLIGENCE_BUREAU", "SPECIAL_BRANCH_SINDH"],
            document=UploadedFile("letter.pdf", data, "application/pdf"),
        )
        await service.submit_verification(agency_user, application_id, remarks="Clear")
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        storage: ObjectStoreClient | None = None,
        settings: WorkflowSettings | None = None,
        audit: AuditLogService | None = None,
    ) -> None:
        self._session = session
        self._storage = storage
        self._settings = settings or WorkflowSettings()
        self._audit = audit or AuditLogService(session)

    def _store(self, key: str, upload: UploadedFile) -> str:
        if self._storage is None:
            raise StorageError("Blob store is not configured", key=key, operation="upload")
        self._storage.upload(
            key,
            upload.content,
            content_type=upload.content_type,
            filename=upload.filename,
        )
        return key

    # -------------------------------------------------------------------------
    # Fan-out / fan-in
    # -------------------------------------------------------------------------

    async def send_for_verification(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        agencies: Iterable[str | Agency],
        *,
        document: UploadedFile | None = None,
        remarks: str | None = None,
    ) -> Application:
        """Route a draft to one or more agencies for background verification.

        The pending set is replaced by ``agencies`` and the completed set is
        emptied. A second call is refused once the application left DRAFT.

        Args:
            actor: Ministry or admin caller.
            application_id: Application to route.
            agencies: Target agencies (duplicates are dropped).
            document: The verification document agencies must consult.
            remarks: Ministry remarks shown to the agencies.

        Returns:
            The application, now PENDING_VERIFICATION.

        Raises:
            ForbiddenError: If the caller may not send for verification.
            InvalidTransitionError: If the application is not a draft.
            WorkflowValidationError: If the agency list is empty or unknown,
                or the document is missing while it is required.
            StorageError: If the document could not be stored.
        """
        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        authorize(
            actor, from_status, Action.SEND_FOR_VERIFICATION, to_status=S.PENDING_VERIFICATION
        )

        targets = parse_agencies(agencies)
        if document is not None and not document.content:
            document = None
        if document is None and self._settings.require_verification_document:
            raise WorkflowValidationError(
                "verification_document", "A verification document is required"
            )

        document_ref = None
        if document is not None:
            document_ref = self._store(
                verification_document_key(application.application_id, document.filename),
                document,
            )

        now = datetime.now(UTC)
        application.pending_verification_agencies = [a.value for a in targets]
        application.verification_completed_agencies = []
        application.verification_document_ref = document_ref
        application.verification_remarks = _optional_text(remarks)
        application.verification_sent_at = now
        application.verification_completed_at = None
        application.status = S.PENDING_VERIFICATION
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.SEND_FOR_VERIFICATION.value,
            from_status=from_status,
            to_status=application.status,
            summary={"agencies": application.pending_verification_agencies},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Application sent for verification",
            extra={
                "application_id": str(application.application_id),
                "from_status": from_status.value,
                "to_status": application.status.value,
                "agencies": application.pending_verification_agencies,
            },
        )
        return application

    async def submit_verification(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        remarks: str | None,
        agency: str | Agency | None = None,
        attachment: UploadedFile | None = None,
    ) -> Application:
        """Record one agency's verification response.

        The agency is taken from the caller's identity (explicit claim, else
        the home agency of its region); admins may name it. The row lock
        serialises concurrent agencies, so exactly one of them sees the
        pending set become empty and advances the status.

        Args:
            actor: Agency or admin caller.
            application_id: Application being answered.
            remarks: Verification remarks (required).
            agency: Agency named in the request, if any.
            attachment: Optional report attached by the agency.

        Returns:
            The application, still PENDING_VERIFICATION or now
            VERIFICATION_RECEIVED.

        Raises:
            AlreadySubmittedError: If this agency already answered.
            ForbiddenError: If the agency is not pending on the application.
            InvalidTransitionError: If the application is not awaiting
                verification.
            WorkflowValidationError: If remarks are missing.
            StorageError: If the attachment could not be stored.
        """
        require_role_action(actor, Action.SUBMIT_VERIFICATION)
        requested = parse_agency(agency) if agency else None
        resolved = resolve_actor_agency(actor, requested)

        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        pending = list(application.pending_verification_agencies or [])
        completed = list(application.verification_completed_agencies or [])

        if resolved.value in completed:
            logger.warning(
                "Duplicate verification submission",
                extra={
                    "application_id": str(application.application_id),
                    "agency": resolved.value,
                    "status": from_status.value,
                },
            )
            raise AlreadySubmittedError(application.application_id, resolved)

        remaining = [a for a in pending if a != resolved.value]
        to_status = S.PENDING_VERIFICATION
        if pending and not remaining:
            to_status = S.VERIFICATION_RECEIVED
        authorize(actor, from_status, Action.SUBMIT_VERIFICATION, to_status=to_status)

        if not agency_may_act(resolved, application, Action.SUBMIT_VERIFICATION):
            logger.warning(
                "Verification from agency not pending",
                extra={
                    "application_id": str(application.application_id),
                    "agency": resolved.value,
                },
            )
            raise ForbiddenError(
                actor.role,
                Action.SUBMIT_VERIFICATION.value,
                from_status,
                reason=f"Agency {resolved.value} is not pending on this application",
            )

        text = _require_text(remarks, "remarks")

        attachment_ref = None
        if attachment is not None and attachment.content:
            attachment_ref = self._store(
                agency_attachment_key(application.application_id, resolved, attachment.filename),
                attachment,
            )

        now = datetime.now(UTC)
        self._put_remark(application, actor, resolved, text, attachment, attachment_ref, now)

        application.pending_verification_agencies = remaining
        application.verification_completed_agencies = [*completed, resolved.value]
        application.status = to_status
        application.updated_at = now
        if not remaining:
            application.verification_completed_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.SUBMIT_VERIFICATION.value,
            from_status=from_status,
            to_status=to_status,
            summary={
                "agency": resolved.value,
                "remaining": remaining,
                "attachment": attachment_ref is not None,
            },
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Verification submitted",
            extra={
                "application_id": str(application.application_id),
                "agency": resolved.value,
                "remaining": len(remaining),
                "to_status": to_status.value,
            },
        )
        return application

    # -------------------------------------------------------------------------
    # Legacy single-agency path
    # -------------------------------------------------------------------------

    async def send_to_agency(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        region: str | None = None,
    ) -> Application:
        """Hand a submitted application to the home agency of a region.

        Args:
            actor: Ministry or admin caller.
            application_id: Application to route.
            region: Region to route by; defaults to the application's region.
        """
        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        authorize(actor, from_status, Action.SEND_TO_AGENCY, to_status=S.AGENCY_REVIEW)

        agency = resolve_home_agency(region or application.region)
        application.assigned_agency = agency
        application.status = S.AGENCY_REVIEW
        application.updated_at = datetime.now(UTC)

        await self._audit.record_transition(
            application,
            actor,
            action=Action.SEND_TO_AGENCY.value,
            from_status=from_status,
            to_status=application.status,
            summary={"agency": agency.value},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Application sent to agency",
            extra={"application_id": str(application.application_id), "agency": agency.value},
        )
        return application

    async def recall_from_agency(self, actor: Actor, application_id: uuid.UUID) -> Application:
        """Take an application back from its assigned agency (AGENCY_REVIEW -> SUBMITTED)."""
        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        authorize(actor, from_status, Action.SEND_TO_AGENCY, to_status=S.SUBMITTED)

        previous = application.assigned_agency
        application.assigned_agency = None
        application.status = S.SUBMITTED
        application.updated_at = datetime.now(UTC)

        await self._audit.record_transition(
            application,
            actor,
            action="recall_from_agency",
            from_status=from_status,
            to_status=application.status,
            summary={"agency": previous.value if previous else None},
        )
        await flush_or_conflict(self._session, application)
        return application

    async def agency_approve(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        remarks: str | None = None,
        agency: str | Agency | None = None,
        attachment: UploadedFile | None = None,
    ) -> Application:
        """Legacy agency clearance.

        SUBMITTED moves to AGENCY_REVIEW. From AGENCY_REVIEW the application
        goes to VERIFICATION_SUBMITTED when the agency attaches a report, and
        to MINISTRY_REVIEW otherwise.
        """
        requested = parse_agency(agency) if agency else None
        resolved = resolve_actor_agency(actor, requested)

        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        has_attachment = attachment is not None and bool(attachment.content)

        if from_status == S.SUBMITTED:
            to_status = S.AGENCY_REVIEW
        elif from_status == S.AGENCY_REVIEW and has_attachment:
            to_status = S.VERIFICATION_SUBMITTED
        else:
            to_status = S.MINISTRY_REVIEW
        authorize(actor, from_status, Action.AGENCY_APPROVE, to_status=to_status)
        self._check_assigned(actor, application, resolved, Action.AGENCY_APPROVE)

        attachment_ref = None
        if has_attachment:
            attachment_ref = self._store(
                agency_attachment_key(application.application_id, resolved, attachment.filename),
                attachment,
            )

        now = datetime.now(UTC)
        text = _optional_text(remarks)
        if text is not None or attachment_ref is not None:
            self._put_remark(
                application, actor, resolved, text or "", attachment, attachment_ref, now
            )

        if application.assigned_agency is None:
            application.assigned_agency = resolved
        application.status = to_status
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.AGENCY_APPROVE.value,
            from_status=from_status,
            to_status=to_status,
            summary={"agency": resolved.value, "attachment": attachment_ref is not None},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Agency approved application",
            extra={
                "application_id": str(application.application_id),
                "agency": resolved.value,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return application

    async def agency_reject(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        remarks: str | None,
        agency: str | Agency | None = None,
    ) -> Application:
        """Legacy agency rejection; the remarks become the rejection reason.

        This is not a ministry decision, so reviewer fields stay unset.
        """
        requested = parse_agency(agency) if agency else None
        resolved = resolve_actor_agency(actor, requested)

        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        authorize(actor, from_status, Action.AGENCY_REJECT, to_status=S.REJECTED)
        self._check_assigned(actor, application, resolved, Action.AGENCY_REJECT)
        text = _require_text(remarks, "remarks")

        now = datetime.now(UTC)
        self._put_remark(application, actor, resolved, text, None, None, now)
        if application.assigned_agency is None:
            application.assigned_agency = resolved
        application.rejection_reason = text
        application.status = S.REJECTED
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.AGENCY_REJECT.value,
            from_status=from_status,
            to_status=application.status,
            summary={"agency": resolved.value},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Agency rejected application",
            extra={"application_id": str(application.application_id), "agency": resolved.value},
        )
        return application

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def verification_document(
        self, actor: Actor, application_id: uuid.UUID
    ) -> tuple[bytes, ObjectMetadata]:
        """Download the ministry's verification document."""
        application = await self._load_documents(actor, application_id)
        if not application.verification_document_ref:
            raise ObjectNotFoundError(
                f"Application {application_id} has no verification document",
                operation="download",
            )
        return self._download(application.verification_document_ref)

    async def attachments(self, actor: Actor, application_id: uuid.UUID) -> list[AgencyRemark]:
        """Agency remarks on the application that carry an attachment."""
        application = await self._load_documents(actor, application_id)
        return [r for r in application.agency_remarks if r.attachment_ref]

    async def agency_attachment(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        agency: str | Agency,
    ) -> tuple[bytes, ObjectMetadata]:
        """Download one agency's attachment."""
        target = parse_agency(agency)
        application = await self._load_documents(actor, application_id)
        remark = application.remark_for(target)
        if remark is None or not remark.attachment_ref:
            raise ObjectNotFoundError(
                f"Agency {target.value} has no attachment on application {application_id}",
                operation="download",
            )
        return self._download(remark.attachment_ref)

    async def _load_documents(self, actor: Actor, application_id: uuid.UUID) -> Application:
        application = await load_application(self._session, application_id)
        if actor.role == UserRole.MISSION_OPERATOR:
            raise ForbiddenError(actor.role, "download verification documents")
        ensure_visible(actor, application)
        return application

    def _download(self, key: str) -> tuple[bytes, ObjectMetadata]:
        if self._storage is None:
            raise StorageError("Blob store is not configured", key=key, operation="download")
        return self._storage.download(key)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_assigned(
        actor: Actor, application: Application, agency: Agency, action: Action
    ) -> None:
        if agency_may_act(agency, application, action):
            return
        assigned = application.assigned_agency
        logger.warning(
            "Agency is not assigned to application",
            extra={
                "application_id": str(application.application_id),
                "agency": agency.value,
                "assigned_agency": assigned.value if assigned else None,
            },
        )
        raise ForbiddenError(
            actor.role,
            action.value,
            application.status,
            reason=f"Application is assigned to {assigned.value if assigned else 'no agency'}",
        )

    @staticmethod
    def _put_remark(
        application: Application,
        actor: Actor,
        agency: Agency,
        remarks: str,
        attachment: UploadedFile | None,
        attachment_ref: str | None,
        submitted_at: datetime,
    ) -> AgencyRemark:
        """Insert or replace the single remark entry held per agency."""
        remark = application.remark_for(agency)
        if remark is None:
            remark = AgencyRemark(
                agency_remark_id=uuid.uuid4(),
                application_id=application.application_id,
                agency=agency,
                remarks=remarks,
                submitted_at=submitted_at,
                submitted_by_id=actor.user_id,
            )
            application.agency_remarks.append(remark)
        else:
            remark.remarks = remarks
            remark.submitted_at = submitted_at
            remark.submitted_by_id = actor.user_id

        if attachment_ref is not None:
            remark.attachment_ref = attachment_ref
            remark.attachment_filename = attachment.filename if attachment else None
        return remark
