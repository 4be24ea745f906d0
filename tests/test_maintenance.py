"""Tests for the startup sweep: duplicate removal and current-flag repair."""

from codex_tokens.services import storage
from codex_tokens.services.maintenance import deduplicate_and_fix_current_versions

from conftest import at


async def _setup(session, specs):
    """specs: (access_token, last_refresh, is_current) per version, oldest number first."""
    identity = await storage.create_identity(session, email="a@x.com", account_id="acc1")
    for access, last_refresh, is_current in specs:
        version = await storage.create_version(
            session,
            identity_id=identity.id,
            id_token="id",
            access_token=access,
            refresh_token="refresh",
            account_id="acc1",
            openai_api_key=None,
            last_refresh=last_refresh,
        )
        version.is_current = is_current
    await session.commit()
    return identity.id


async def _state(session, identity_id):
    return [
        (v.version_number, v.access_token, v.is_current)
        for v in await storage.list_versions(session, identity_id)
    ]


class TestDeduplicate:
    async def test_keeps_freshest_copy_of_each_triple(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), False),
            ("b", at(2), False),
            ("a", at(3), True),
        ])

        deleted = await deduplicate_and_fix_current_versions(session)

        assert deleted == 1
        assert await _state(session, identity_id) == [(3, "a", True), (2, "b", False)]

    async def test_created_at_breaks_last_refresh_ties(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), False),
            ("a", at(1), True),
        ])

        await deduplicate_and_fix_current_versions(session)

        assert await _state(session, identity_id) == [(2, "a", True)]

    async def test_deleting_the_current_duplicate_repairs_the_flag(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), True),
            ("a", at(2), False),
        ])

        await deduplicate_and_fix_current_versions(session)

        assert await _state(session, identity_id) == [(2, "a", True)]


class TestCurrentFlagRepair:
    async def test_no_current_version(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), False),
            ("b", at(3), False),
            ("c", at(2), False),
        ])

        deleted = await deduplicate_and_fix_current_versions(session)

        assert deleted == 0
        assert [a for _, a, current in await _state(session, identity_id) if current] == ["b"]

    async def test_several_current_versions(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), True),
            ("b", at(2), True),
        ])

        await deduplicate_and_fix_current_versions(session)

        assert await _state(session, identity_id) == [(2, "b", True), (1, "a", False)]

    async def test_single_flag_on_older_version_is_respected(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), True),
            ("b", at(2), False),
        ])

        await deduplicate_and_fix_current_versions(session)

        assert await _state(session, identity_id) == [(2, "b", False), (1, "a", True)]

    async def test_second_run_changes_nothing(self, session):
        identity_id = await _setup(session, [
            ("a", at(1), True),
            ("b", at(2), True),
            ("b", at(2), False),
            ("c", at(3), False),
        ])

        await deduplicate_and_fix_current_versions(session)
        first = await _state(session, identity_id)
        deleted = await deduplicate_and_fix_current_versions(session)

        assert deleted == 0
        assert await _state(session, identity_id) == first

    async def test_identity_without_versions_is_skipped(self, session):
        await storage.create_identity(session, email="empty@x.com")
        await session.commit()

        assert await deduplicate_and_fix_current_versions(session) == 0
