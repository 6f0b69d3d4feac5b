"""ETDS service layer.

This package contains the workflow core and its collaborators:
- status: Closed status set and legal transition table
- authz: Role-action authorizer and agency scoping
- routing: Region to home-agency routing
- VerificationService: Verification fan-out/fan-in and the legacy agency path
- DecisionService: Ministry decisions, blacklisting, print and issue
- ApplicationService: Intake, draft edits and role-scoped reads
- AuditLogService: Hash-chained audit trail of transitions
- ObjectStoreClient: S3-compatible storage for documents and attachments
"""

from etds.services.applications import ApplicationPage, ApplicationService
from etds.services.audit_log import AuditEntry, AuditLogService, ChainVerificationResult
from etds.services.authz import Action, Actor, allowed_actions, authorize, can_act
from etds.services.decision import Decision, DecisionService
from etds.services.errors import (
    AlreadySubmittedError,
    ApplicationNotFoundError,
    ConflictingUpdateError,
    ForbiddenError,
    InvalidTransitionError,
    WorkflowError,
    WorkflowValidationError,
)
from etds.services.routing import resolve_home_agency
from etds.services.storage import (
    Buckets,
    ObjectNotFoundError,
    ObjectStoreClient,
    StorageError,
)
from etds.services.verification import UploadedFile, VerificationService

__all__ = [
    "Action",
    "Actor",
    "AlreadySubmittedError",
    "ApplicationNotFoundError",
    "ApplicationPage",
    "ApplicationService",
    "AuditEntry",
    "AuditLogService",
    "Buckets",
    "ChainVerificationResult",
    "ConflictingUpdateError",
    "Decision",
    "DecisionService",
    "ForbiddenError",
    "InvalidTransitionError",
    "ObjectNotFoundError",
    "ObjectStoreClient",
    "StorageError",
    "UploadedFile",
    "VerificationService",
    "WorkflowError",
    "WorkflowValidationError",
    "allowed_actions",
    "authorize",
    "can_act",
    "resolve_home_agency",
]
