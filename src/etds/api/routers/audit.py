"""Audit API router.

Admin-only endpoints over the hash-chained transition log and the active
workflow policy.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from etds.api.dependencies import DbSession
from etds.api.middleware.auth import Identity, require_roles
from etds.api.schemas.applications import ChainVerificationResponse
from etds.core.settings import get_settings
from etds.db.models.base import UserRole
from etds.services.audit_log import AuditLogService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    responses={
        401: {"description": "Authentication required"},
        403: {"description": "Admin role required"},
    },
)

AdminIdentity = Annotated[Identity, Depends(require_roles(UserRole.ADMIN))]


@router.get(
    "/verify",
    response_model=ChainVerificationResponse,
    summary="Verify the audit chain",
    description="Recomputes record hashes and checks sequence continuity.",
)
async def verify_audit_chain(
    identity: AdminIdentity,
    db: DbSession,
    start_seq: Annotated[int | None, Query(ge=1)] = None,
    end_seq: Annotated[int | None, Query(ge=1)] = None,
) -> ChainVerificationResponse:
    result = await AuditLogService(db).verify_chain(start_seq=start_seq, end_seq=end_seq)
    logger.info(
        "Audit chain verified",
        extra={
            "user_id": identity.user_id,
            "valid": result.valid,
            "checked_records": result.checked_records,
        },
    )
    return ChainVerificationResponse(
        valid=result.valid,
        checked_records=result.checked_records,
        first_seq_no=result.first_seq_no,
        last_seq_no=result.last_seq_no,
        errors=list(result.errors),
    )


@router.get("/policy", summary="Active workflow policy")
async def workflow_policy(identity: AdminIdentity, request: Request) -> dict[str, Any]:
    """Return the non-sensitive policy snapshot and its hash."""
    settings = request.app.state.settings or get_settings()
    return {
        "policy": settings.get_policy_snapshot(),
        "policy_hash": settings.get_policy_hash(),
    }
