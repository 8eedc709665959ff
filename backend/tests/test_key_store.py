"""
Тесты KeyStore: статус ротации, добавление, ротация, текущий ключ.
"""
import asyncio
from datetime import timedelta

import pytest

from keyguard.errors import DuplicateKeyId, UnknownKey
from keyguard.models import KeyAlgorithm, KeyEventType, RequestContext


async def _current_ids(key_store) -> list[str]:
    return [k.key_id for k in await key_store.list_keys() if k.is_current]


class TestRotationStatus:

    @pytest.mark.asyncio
    async def test_primary_key_scenario(self, key_store, services, clock):
        """Новый ключ: 30 дней до ротации; через 31 день просрочен на день."""
        await key_store.add_key("primary-20250101", KeyAlgorithm.HS256, timedelta(days=30), make_current=True)

        status = await key_store.check_rotation_status()
        assert [s.model_dump() for s in status] == [
            {"key_id": "primary-20250101", "needs_rotation": False, "days_until_rotation": 30}
        ]

        clock.advance(days=31)
        status = await key_store.check_rotation_status()
        assert status[0].needs_rotation is True
        assert status[0].days_until_rotation == -1

        before = (await key_store.get_key("primary-20250101")).last_rotated_at
        await key_store.rotate_key("primary-20250101")
        rotated = await key_store.get_key("primary-20250101")
        assert rotated.last_rotated_at == clock.now()
        assert rotated.last_rotated_at > before
        assert rotated.is_current is True

        rotated_events = await services.audit.query(50, KeyEventType.ROTATED)
        assert len(rotated_events) == 1
        assert rotated_events[0].key_id == "primary-20250101"

        validation = await services.admin_validator.validate("admin-1")
        assert validation.is_admin is True

    @pytest.mark.asyncio
    async def test_not_overdue_at_29_days(self, key_store, clock):
        await key_store.add_key("k1")
        clock.advance(days=29)
        [status] = await key_store.check_rotation_status()
        assert status.needs_rotation is False
        assert status.days_until_rotation == 1

    @pytest.mark.asyncio
    async def test_boundary_at_exactly_30_days_is_overdue(self, key_store, clock):
        await key_store.add_key("k1")
        clock.advance(days=30)
        [status] = await key_store.check_rotation_status()
        assert status.needs_rotation is True
        assert status.days_until_rotation == 0

    @pytest.mark.asyncio
    async def test_just_before_boundary_is_not_overdue(self, key_store, clock):
        await key_store.add_key("k1")
        clock.advance(days=30, seconds=-1)
        [status] = await key_store.check_rotation_status()
        assert status.needs_rotation is False
        assert status.days_until_rotation == 0

    @pytest.mark.asyncio
    async def test_custom_frequency(self, key_store, clock):
        await key_store.add_key("weekly", rotation_frequency=timedelta(days=7))
        clock.advance(days=8)
        [status] = await key_store.check_rotation_status()
        assert status.needs_rotation is True
        assert status.days_until_rotation == -1

    @pytest.mark.asyncio
    async def test_status_is_read_only(self, key_store, services):
        await key_store.add_key("k1")
        events_before = len(await services.audit.query(100))
        await asyncio.gather(*(key_store.check_rotation_status() for _ in range(10)))
        assert len(await services.audit.query(100)) == events_before


class TestAddKey:

    @pytest.mark.asyncio
    async def test_duplicate_key_id(self, key_store):
        await key_store.add_key("k1")
        with pytest.raises(DuplicateKeyId):
            await key_store.add_key("k1", KeyAlgorithm.HS512)

    @pytest.mark.asyncio
    async def test_events_for_current_key(self, key_store, services):
        ctx = RequestContext(performed_by="admin-1", client_ip="10.0.0.1", user_agent="pytest")
        await key_store.add_key("k1", make_current=True, context=ctx)

        events = await services.audit.query(10)
        assert {e.event_type for e in events} == {KeyEventType.CREATED, KeyEventType.MADE_CURRENT}
        assert all(e.performed_by == "admin-1" and e.client_ip == "10.0.0.1" for e in events)

    @pytest.mark.asyncio
    async def test_non_current_key_only_created_event(self, key_store, services):
        await key_store.add_key("k1")
        events = await services.audit.query(10)
        assert [e.event_type for e in events] == [KeyEventType.CREATED]

    @pytest.mark.asyncio
    async def test_material_matches_algorithm(self, key_store, services):
        await key_store.add_key("k512", KeyAlgorithm.HS512)
        key = await key_store.get_key("k512")
        assert len(services.tokens.material.reveal(key.secret_enc)) == 64


class TestSingleCurrentKey:

    @pytest.mark.asyncio
    async def test_make_current_flips_previous(self, key_store):
        await key_store.add_key("k1", make_current=True)
        await key_store.add_key("k2", make_current=True)
        assert await _current_ids(key_store) == ["k2"]

        await key_store.make_current("k1")
        assert await _current_ids(key_store) == ["k1"]

    @pytest.mark.asyncio
    async def test_sequence_of_operations(self, key_store, clock):
        operations = [
            key_store.add_key("a", make_current=True),
            key_store.add_key("b"),
            key_store.rotate_key("a"),
            key_store.add_key("c", make_current=True),
            key_store.rotate_key("b"),
            key_store.make_current("b"),
            key_store.rotate_key("c"),
        ]
        for op in operations:
            await op
            clock.advance(hours=1)
            assert len(await _current_ids(key_store)) <= 1
        assert await _current_ids(key_store) == ["b"]

    @pytest.mark.asyncio
    async def test_concurrent_make_current(self, key_store):
        await asyncio.gather(*(
            key_store.add_key(f"k{i}", make_current=True) for i in range(8)
        ))
        assert len(await _current_ids(key_store)) == 1

    @pytest.mark.asyncio
    async def test_superseded_keys_are_retained(self, key_store):
        await key_store.add_key("k1", make_current=True)
        await key_store.add_key("k2", make_current=True)
        assert {k.key_id for k in await key_store.list_keys()} == {"k1", "k2"}


class TestRotateKey:

    @pytest.mark.asyncio
    async def test_unknown_key(self, key_store, services):
        with pytest.raises(UnknownKey):
            await key_store.rotate_key("missing")
        assert await services.audit.query(10, KeyEventType.ROTATED) == []

    @pytest.mark.asyncio
    async def test_material_changes_identity_does_not(self, key_store):
        await key_store.add_key("k1", make_current=True)
        before = await key_store.get_key("k1")
        after = await key_store.rotate_key("k1")
        assert after.key_id == before.key_id
        assert after.secret_enc != before.secret_enc
        assert after.previous_secrets[0].secret_enc == before.secret_enc
        assert after.is_current is True

    @pytest.mark.asyncio
    async def test_non_current_key_stays_non_current(self, key_store):
        await key_store.add_key("k1", make_current=True)
        await key_store.add_key("k2")
        await key_store.rotate_key("k2")
        assert await _current_ids(key_store) == ["k1"]

    @pytest.mark.asyncio
    async def test_failed_rotation_emits_no_event(self, key_store, services):
        await key_store.add_key("k1", make_current=True)

        async def broken(*args, **kwargs):
            raise ConnectionError("backend unreachable")

        key_store.repo.update_material = broken
        with pytest.raises(ConnectionError):
            await key_store.rotate_key("k1")

        assert await services.audit.query(10, KeyEventType.ROTATED) == []
        assert await _current_ids(key_store) == ["k1"]

    @pytest.mark.asyncio
    async def test_rotation_refreshes_callers_session(self, key_store, services):
        await key_store.add_key("k1", make_current=True)
        token = await services.tokens.issue("admin-1")
        principal = await services.tokens.decode(token)

        await key_store.rotate_key("k1", session=principal)

        replacement = services.sessions.replacement_for(principal.jti)
        assert replacement is not None
        refreshed = await services.tokens.decode(replacement)
        assert refreshed.user_id == "admin-1"

    @pytest.mark.asyncio
    async def test_refresh_failure_does_not_undo_rotation(self, key_store, services):
        await key_store.add_key("k1", make_current=True)
        token = await services.tokens.issue("admin-1")
        principal = await services.tokens.decode(token)

        async def broken_issue(user_id):
            raise RuntimeError("token service down")

        services.tokens.issue = broken_issue
        rotated = await key_store.rotate_key("k1", session=principal)

        assert len(rotated.previous_secrets) == 1
        assert len(await services.audit.query(10, KeyEventType.ROTATED)) == 1
        assert services.sessions.replacement_for(principal.jti) is None
