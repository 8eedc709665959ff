"""
Тесты журнала аудита.
"""
from datetime import timedelta

import pytest

from keyguard.models import KeyEventType, RequestContext


class TestKeyEvents:

    @pytest.mark.asyncio
    async def test_query_returns_newest_first(self, services, clock):
        for i in range(7):
            await services.audit.record_key_event(KeyEventType.CREATED, f"k{i}")
            clock.advance(seconds=1)

        events = await services.audit.query(5)
        assert [e.key_id for e in events] == ["k6", "k5", "k4", "k3", "k2"]

    @pytest.mark.asyncio
    async def test_same_timestamp_keeps_insert_order(self, services):
        for i in range(3):
            await services.audit.record_key_event(KeyEventType.CREATED, f"k{i}")
        events = await services.audit.query(10)
        assert [e.key_id for e in events] == ["k2", "k1", "k0"]

    @pytest.mark.asyncio
    async def test_filter_by_type(self, services):
        await services.audit.record_key_event(KeyEventType.CREATED, "k1")
        await services.audit.record_key_event(KeyEventType.ROTATED, "k1")
        await services.audit.record_key_event(KeyEventType.MADE_CURRENT, "k1")

        rotated = await services.audit.query(10, "rotated")
        assert [e.event_type for e in rotated] == [KeyEventType.ROTATED]

    @pytest.mark.asyncio
    async def test_made_current_event_name(self, services):
        await services.audit.record_key_event(KeyEventType.MADE_CURRENT, "k1")

        [event] = await services.audit.query(10, "made-current")
        assert event.event_type.value == "made-current"
        assert event.model_dump(mode="json")["event_type"] == "made-current"

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, services):
        for i in range(3):
            await services.audit.record_key_event(KeyEventType.CREATED, f"k{i}")
        assert len(await services.audit.query(0)) == 1
        assert len(await services.audit.query(10_000)) == 3

    @pytest.mark.asyncio
    async def test_context_is_stored(self, services):
        ctx = RequestContext(performed_by="admin-1", client_ip="192.168.1.5", user_agent="curl/8")
        event = await services.audit.record_key_event(KeyEventType.ROTATED, "k1", ctx)
        [stored] = await services.audit.query(1)
        assert stored == event
        assert stored.user_agent == "curl/8"

    @pytest.mark.asyncio
    async def test_query_results_are_copies(self, services, audit_repo):
        await services.audit.record_key_event(KeyEventType.CREATED, "k1")
        [event] = await services.audit.query(1)
        event.key_id = "changed"
        assert audit_repo.key_events[0].key_id == "k1"


class TestWriteFailures:

    @pytest.mark.asyncio
    async def test_failure_is_not_raised(self, services, audit_repo):
        async def broken(*args):
            raise ConnectionError("audit store unreachable")

        audit_repo.insert_key_event = broken
        audit_repo.insert_attempt = broken

        assert await services.audit.record_key_event(KeyEventType.CREATED, "k1") is None
        assert await services.audit.record_attempt("admin-1", True) is None
        assert services.audit.write_failures == 2

        errors = await services.system_logger.get_logs(source="audit")
        assert len(errors) == 2
        assert all(e["level"] == "error" for e in errors)

    @pytest.mark.asyncio
    async def test_key_operation_survives_audit_failure(self, services, key_store, audit_repo):
        async def broken(*args):
            raise ConnectionError("audit store unreachable")

        audit_repo.insert_key_event = broken
        await key_store.add_key("k1", make_current=True)

        assert (await key_store.current_key()).key_id == "k1"
        assert services.audit.write_failures == 2


class TestAttempts:

    @pytest.mark.asyncio
    async def test_recent_attempts_by_user(self, services, clock):
        await services.audit.record_attempt("admin-1", True)
        clock.advance(seconds=1)
        await services.audit.record_attempt("admin-2", False)
        clock.advance(seconds=1)
        await services.audit.record_attempt("admin-1", False)

        attempts = await services.audit.recent_attempts(10, "admin-1")
        assert [a.success for a in attempts] == [False, True]
        assert len(await services.audit.recent_attempts(10)) == 3

    @pytest.mark.asyncio
    async def test_stats(self, services, clock):
        await services.audit.record_attempt("admin-1", True)
        await services.audit.record_attempt("admin-2", False)
        await services.audit.record_key_event(KeyEventType.CREATED, "k1")

        stats = await services.audit.get_stats()
        assert stats == {
            "total_attempts": 2,
            "failed_today": 1,
            "unique_users_week": 2,
            "key_events_total": 1,
            "write_failures": 0,
        }


class TestSystemLog:

    @pytest.mark.asyncio
    async def test_timestamp_from_injected_clock(self, services, clock):
        await services.system_logger.warning("key_rotation", "Ключ k1 требует ротации")
        clock.advance(minutes=3)
        await services.system_logger.info("key_rotation", "Ключ k1 ротирован")

        entries = await services.system_logger.get_logs()
        assert [e["timestamp"] for e in entries] == [clock.now(), clock.now() - timedelta(minutes=3)]
        assert [e["level"] for e in entries] == ["info", "warning"]
