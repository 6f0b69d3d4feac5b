"""Workflow services against a real async session.

The other unit tests hand the services a mocked AsyncSession. These run them
on a SQLite database through aiosqlite, so relationship loading, flush
ordering and the version counter behave as they do against PostgreSQL.

Tests cover:
- Intake followed by a response built after commit
- Fan-out to two agencies, fan-in from both, then a ministry decision
- Duplicate fan-in leaving exactly one remark
- Stale version surfaced as ConflictingUpdateError
- POST /api/applications end to end on a real session
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from etds.api.dependencies import get_db_session
from etds.api.routers.applications import application_to_response
from etds.db.models import Agency, ApplicationStatus, Base
from etds.services.applications import ApplicationService, flush_or_conflict, load_application
from etds.services.audit_log import AuditLogService
from etds.services.decision import Decision, DecisionService
from etds.services.errors import AlreadySubmittedError, ConflictingUpdateError
from etds.services.verification import UploadedFile, VerificationService
from tests.factories import citizen_data

S = ApplicationStatus

AGENCIES = [Agency.INTELLIGENCE_BUREAU.value, Agency.SPECIAL_BRANCH_SINDH.value]


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with the ETDS schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'etds.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory configured like the application's."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_draft(session_factory, operator):
    async with session_factory() as session:
        application = await ApplicationService(session).create(operator, citizen_data())
        await session.commit()
    return application.application_id


async def send_to_agencies(session_factory, ministry, application_id):
    async with session_factory() as session:
        service = VerificationService(session, storage=MagicMock())
        await service.send_for_verification(
            ministry,
            application_id,
            AGENCIES,
            document=UploadedFile("letter.pdf", b"%PDF-1.7", "application/pdf"),
        )
        await session.commit()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------
class TestApplicationRecords:
    """Tests for intake on a real session."""

    @pytest.mark.asyncio
    async def test_response_after_commit(self, session_factory, operator):
        async with session_factory() as session:
            application = await ApplicationService(session).create(operator, citizen_data())
            await session.commit()

            response = application_to_response(application)

        assert response.status == S.DRAFT
        assert response.agency_remarks == []
        assert response.region == "Sindh"

    @pytest.mark.asyncio
    async def test_create_is_recorded_as_draft_to_draft(
        self, session_factory, operator, ministry
    ):
        application_id = await create_draft(session_factory, operator)

        async with session_factory() as session:
            loaded = await ApplicationService(session).get(ministry, application_id)
            history = await AuditLogService(session).history(application_id)

        assert loaded.status == S.DRAFT
        assert loaded.agency_remarks == []
        assert [(e.action, e.from_status, e.to_status) for e in history] == [
            ("create", "DRAFT", "DRAFT")
        ]


class TestWorkflowRoundTrip:
    """Tests for fan-out, fan-in and decision across committed transactions."""

    @pytest.mark.asyncio
    async def test_two_agency_round_trip(
        self, session_factory, operator, ministry, ib_agency, sindh_agency
    ):
        application_id = await create_draft(session_factory, operator)
        await send_to_agencies(session_factory, ministry, application_id)

        async with session_factory() as session:
            application = await VerificationService(session).submit_verification(
                ib_agency, application_id, remarks="No adverse record"
            )
            await session.commit()
        assert application.status == S.PENDING_VERIFICATION
        assert application.pending_verification_agencies == [Agency.SPECIAL_BRANCH_SINDH.value]

        async with session_factory() as session:
            application = await VerificationService(session).submit_verification(
                sindh_agency, application_id, remarks="Address verified"
            )
            await session.commit()
        assert application.status == S.VERIFICATION_RECEIVED
        assert application.pending_verification_agencies == []

        async with session_factory() as session:
            await DecisionService(session).decide(ministry, application_id, Decision.APPROVE)
            await session.commit()

        async with session_factory() as session:
            loaded = await load_application(session, application_id)
            history = await AuditLogService(session).history(application_id)

        assert loaded.status == S.APPROVED
        assert loaded.reviewed_by_id == ministry.user_id
        assert sorted(r.agency.value for r in loaded.agency_remarks) == sorted(AGENCIES)
        assert sorted(loaded.verification_completed_agencies) == sorted(AGENCIES)
        assert [e.to_status for e in history] == [
            "DRAFT",
            "PENDING_VERIFICATION",
            "PENDING_VERIFICATION",
            "VERIFICATION_RECEIVED",
            "APPROVED",
        ]
        assert [e.seq_no for e in history] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_duplicate_submission_keeps_one_remark(
        self, session_factory, operator, ministry, ib_agency
    ):
        application_id = await create_draft(session_factory, operator)
        await send_to_agencies(session_factory, ministry, application_id)

        async with session_factory() as session:
            await VerificationService(session).submit_verification(
                ib_agency, application_id, remarks="No adverse record"
            )
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(AlreadySubmittedError):
                await VerificationService(session).submit_verification(
                    ib_agency, application_id, remarks="Again"
                )
            await session.rollback()

        async with session_factory() as session:
            loaded = await load_application(session, application_id)

        assert [(r.agency, r.remarks) for r in loaded.agency_remarks] == [
            (Agency.INTELLIGENCE_BUREAU, "No adverse record")
        ]
        assert loaded.status == S.PENDING_VERIFICATION

    @pytest.mark.asyncio
    async def test_stale_copy_conflicts(self, session_factory, operator):
        application_id = await create_draft(session_factory, operator)

        async with session_factory() as first, session_factory() as second:
            stale = await load_application(second, application_id)

            fresh = await load_application(first, application_id, for_update=True)
            fresh.profession = "Doctor"
            await first.commit()

            stale.profession = "Pilot"
            with pytest.raises(ConflictingUpdateError):
                await flush_or_conflict(second, stale)


class TestCreateEndpoint:
    """Tests for POST /api/applications on a real session."""

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, test_app, api_client, auth_header, session_factory):
        async def override_get_db_session():
            async with session_factory() as session:
                yield session

        test_app.dependency_overrides[get_db_session] = override_get_db_session
        payload = {
            name: value.isoformat() if hasattr(value, "isoformat") else value
            for name, value in citizen_data().items()
        }
        headers = auth_header("MISSION_OPERATOR", user_id="operator-1", state="Sindh")

        created = await api_client.post("/api/applications", json=payload, headers=headers)

        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "DRAFT"
        assert body["agency_remarks"] == []

        fetched = await api_client.get(
            f"/api/applications/{body['application_id']}", headers=headers
        )

        assert fetched.status_code == 200
        assert fetched.json()["first_name"] == "Ayesha"
