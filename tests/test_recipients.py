import pytest

from certsync.db.models import ROLE_PERMISSIONS, Collection, UserRole, UserStatus
from certsync.services.workflow.recipients import (
    normalize_email,
    placeholder_recipient_id,
    resolve_or_create_recipient,
)


class TestEmailNormalization:
    """Test recipient email handling."""

    def test_normalizes_case_and_whitespace(self):
        assert normalize_email("  New.Person@Example.COM ") == "new.person@example.com"

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "two words@example.com"])
    def test_rejects_invalid(self, email):
        with pytest.raises(ValueError):
            normalize_email(email)

    def test_placeholder_id_is_stable(self):
        assert placeholder_recipient_id("X@Example.com") == placeholder_recipient_id(
            "x@example.com"
        )


class TestResolveOrCreateRecipient:
    """Test recipient resolution during certificate issuance."""

    @pytest.mark.asyncio
    async def test_resolves_existing_user(self, store, recipient_user):
        resolved = await resolve_or_create_recipient(store, "U1@certsync.test")

        assert resolved == recipient_user["id"]
        assert await store.count(Collection.USERS) == 1

    @pytest.mark.asyncio
    async def test_creates_placeholder_for_unknown_email(self, store):
        user_id = await resolve_or_create_recipient(
            store, "new@x.org", display_name="New Person"
        )

        user = await store.get(Collection.USERS, user_id)
        assert user["email"] == "new@x.org"
        assert user["display_name"] == "New Person"
        assert user["role"] == UserRole.RECIPIENT
        assert user["status"] == UserStatus.ACTIVE
        assert user["permissions"] == ROLE_PERMISSIONS[UserRole.RECIPIENT]
        assert user["profile_metadata"]["created_by_certificate"] is True
        assert user_id == placeholder_recipient_id("new@x.org")

    @pytest.mark.asyncio
    async def test_repeated_calls_resolve_to_one_user(self, store):
        first = await resolve_or_create_recipient(store, "new@x.org")
        second = await resolve_or_create_recipient(store, "NEW@x.org")

        assert first == second
        assert await store.count(Collection.USERS, {"email": "new@x.org"}) == 1

    @pytest.mark.asyncio
    async def test_lost_creation_race_reads_winner(self, store, monkeypatch):
        winner = await resolve_or_create_recipient(store, "race@x.org")

        # Simulate a caller whose lookup ran before the winner committed.
        original_query = store.query
        calls = {"n": 0}

        async def stale_first_query(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return []
            return await original_query(*args, **kwargs)

        monkeypatch.setattr(store, "query", stale_first_query)
        loser = await resolve_or_create_recipient(store, "race@x.org")

        assert loser == winner
        assert calls["n"] == 2
