"""Retention runs against a real database session.

Policies, forms and audit entries live in a SQLite file accessed through
aiosqlite, so commits, rollbacks and expired ORM state behave as they do
in production.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select, text

from chryso.db.session import create_database_engine, create_session_factory
from chryso.models import AuditAction, AuditLog, Base, Form, RetentionPolicy
from chryso.services.policy_store import PolicyStore
from chryso.services.retention_scheduler import RetentionScheduler
from factories import RetentionPolicyFactory

NOW = datetime(2024, 3, 1, 2, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'retention.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def org_id():
    return uuid4()


async def _seed(sessions, org_id, old=3, recent=1, **policy_kwargs) -> UUID:
    """Store a policy plus ``old`` forms past a 30 day cutoff and ``recent`` within it."""
    policy = RetentionPolicyFactory.build(organization_id=org_id, **policy_kwargs)
    async with sessions() as session:
        session.add(policy)
        for i in range(old):
            session.add(
                Form(organization_id=org_id, title=f"old-{i}", created_at=NOW - timedelta(days=40))
            )
        for i in range(recent):
            session.add(
                Form(organization_id=org_id, title=f"recent-{i}", created_at=NOW - timedelta(days=5))
            )
        await session.commit()
    return policy.id


async def _form_count(sessions) -> int:
    async with sessions() as session:
        return await session.scalar(select(func.count()).select_from(Form))


async def _load_policy(sessions, policy_id) -> RetentionPolicy:
    async with sessions() as session:
        return await session.get(RetentionPolicy, policy_id)


async def _execution_entries(sessions, policy_id) -> list[AuditLog]:
    async with sessions() as session:
        result = await session.execute(
            select(AuditLog).where(
                AuditLog.action == AuditAction.RETENTION_EXECUTE,
                AuditLog.target_id == str(policy_id),
            )
        )
        return list(result.scalars().all())


def _scheduler(sessions) -> RetentionScheduler:
    return RetentionScheduler(sessions, owner="worker-1", clock=lambda: NOW)


class TestRetentionRunsOnDatabase:
    """Manual runs through the scheduler with real sessions."""

    @pytest.mark.asyncio
    async def test_successful_run(self, sessions, org_id, tmp_path):
        policy_id = await _seed(
            sessions,
            org_id,
            archive_before_delete=True,
            archive_location=str(tmp_path / "archive"),
        )

        result = await _scheduler(sessions).trigger_policy(policy_id, organization_id=org_id)

        assert result.success is True
        assert result.records_deleted == 3
        assert await _form_count(sessions) == 1
        assert len(list((tmp_path / "archive").iterdir())) == 1

        policy = await _load_policy(sessions, policy_id)
        assert policy.records_archived == 3
        assert policy.records_deleted == 3
        assert policy.total_size_archived == result.archive_size
        assert policy.error_count == 0
        assert policy.last_executed is not None
        assert policy.running_owner is None

        entries = await _execution_entries(sessions, policy_id)
        assert len(entries) == 1
        assert entries[0].success is True

    @pytest.mark.asyncio
    async def test_archive_failure_is_recorded(self, sessions, org_id, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        policy_id = await _seed(
            sessions,
            org_id,
            archive_before_delete=True,
            archive_location=str(blocker / "archive"),
        )

        result = await _scheduler(sessions).trigger_policy(policy_id, organization_id=org_id)

        assert result.success is False
        assert "Failed to write archive" in result.error
        assert await _form_count(sessions) == 4

        policy = await _load_policy(sessions, policy_id)
        assert policy.error_count == 1
        assert policy.last_error == result.error
        assert policy.last_error_at is not None
        assert policy.last_executed is not None
        assert policy.records_deleted == 0
        assert policy.running_owner is None

        entries = await _execution_entries(sessions, policy_id)
        assert len(entries) == 1
        assert entries[0].success is False
        assert entries[0].severity == "high"

    @pytest.mark.asyncio
    async def test_delete_failure_is_recorded(self, db_engine, sessions, org_id):
        policy_id = await _seed(sessions, org_id, error_count=2)
        async with db_engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TRIGGER forms_locked BEFORE DELETE ON forms "
                    "BEGIN SELECT RAISE(ABORT, 'forms are locked'); END"
                )
            )

        result = await _scheduler(sessions).trigger_policy(policy_id, organization_id=org_id)

        assert result.success is False
        assert result.error == "Failed to delete from forms"
        assert await _form_count(sessions) == 4

        policy = await _load_policy(sessions, policy_id)
        assert policy.error_count == 3
        assert policy.last_error == "Failed to delete from forms"
        assert policy.records_deleted == 0

        entries = await _execution_entries(sessions, policy_id)
        assert [entry.success for entry in entries] == [False]

    @pytest.mark.asyncio
    async def test_policy_legal_hold_is_audited(self, sessions, org_id):
        policy_id = await _seed(sessions, org_id, legal_hold_enabled=True)

        result = await _scheduler(sessions).trigger_policy(policy_id, organization_id=org_id)

        assert result.skipped_reason == "legal_hold"
        assert await _form_count(sessions) == 4

        entries = await _execution_entries(sessions, policy_id)
        assert len(entries) == 1
        assert entries[0].details["skipped_reason"] == "legal_hold"


class TestPolicyStoreOnDatabase:
    """Statistic updates persisted through PolicyStore."""

    @pytest.mark.asyncio
    async def test_counters_exceed_32_bits(self, sessions, org_id):
        policy_id = await _seed(sessions, org_id, old=0, recent=0)
        three_gib = 3 * 2**30

        async with sessions() as session:
            store = PolicyStore(session)
            await store.record_success(policy_id, 10, 10, three_gib, NOW)
            await store.record_success(policy_id, 5, 5, three_gib, NOW)

        policy = await _load_policy(sessions, policy_id)
        assert policy.total_size_archived == 2 * three_gib
        assert policy.records_deleted == 15

    @pytest.mark.asyncio
    async def test_record_failure_keeps_counters(self, sessions, org_id):
        policy_id = await _seed(sessions, org_id, old=0, recent=0, records_deleted=7)

        async with sessions() as session:
            await PolicyStore(session).record_failure(policy_id, "disk full", NOW)

        policy = await _load_policy(sessions, policy_id)
        assert policy.records_deleted == 7
        assert policy.error_count == 1
        assert policy.last_error == "disk full"
