"""
Tests for the SQLite audit trail.
"""

import pytest

from services.audit_store import AdmissionRecord, AuditStore, ResultRecord


def _admission(event_id: str = "555", script: str = "echo hi") -> AdmissionRecord:
    return AdmissionRecord(
        author_id="42",
        author_handle="alice",
        event_id=event_id,
        script=script,
        event_timestamp=1714564800,
    )


@pytest.fixture
async def store(temp_db_path):
    audit = AuditStore(temp_db_path)
    await audit.ensure_schema()
    return audit


class TestAuditStore:
    """Tests for AuditStore."""

    async def test_schema_is_idempotent(self, store):
        await store.ensure_schema()
        await store.ensure_schema()
        assert await store.list_admissions() == []

    async def test_creates_parent_directory(self, tmp_path):
        audit = AuditStore(str(tmp_path / "nested" / "audit.db"))
        await audit.ensure_schema()
        assert (tmp_path / "nested" / "audit.db").exists()

    async def test_records_admission(self, store):
        assert await store.record_admission(_admission()) is True

        records = await store.list_admissions()
        assert records == [_admission()]

    async def test_records_result(self, store):
        assert await store.record_result(ResultRecord(event_id="555", result="hi")) is True
        assert await store.record_result(
            ResultRecord(event_id="556", result="", error="user error: exit status 1")
        )

        results = await store.list_results()
        assert [r.event_id for r in results] == ["555", "556"]
        assert results[0].error is None
        assert results[1].error == "user error: exit status 1"

    async def test_duplicates_are_tolerated(self, store):
        await store.record_admission(_admission())
        await store.record_admission(_admission())

        assert len(await store.list_admissions("555")) == 2

    async def test_filter_by_event(self, store):
        await store.record_admission(_admission("1"))
        await store.record_admission(_admission("2", script="seq 3"))

        records = await store.list_admissions("2")
        assert [r.script for r in records] == ["seq 3"]

    async def test_write_failure_returns_false(self, tmp_path):
        audit = AuditStore(str(tmp_path / "does-not-exist" / "audit.db"))

        assert await audit.record_admission(_admission()) is False
        assert await audit.record_result(ResultRecord(event_id="555", result="hi")) is False

    async def test_write_without_schema_returns_false(self, temp_db_path):
        audit = AuditStore(temp_db_path)
        assert await audit.record_result(ResultRecord(event_id="555", result="hi")) is False
