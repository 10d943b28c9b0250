import pytest

from certsync.db.models import InteractionType, UserRole
from certsync.services.activity_recorder import interaction_id


class TestActivityRecorder:
    """Test the append-only interaction log."""

    @pytest.mark.asyncio
    async def test_record_once_per_event_key(self, recorder):
        first = await recorder.record(
            InteractionType.DOCUMENT_UPLOADED,
            UserRole.RECIPIENT,
            UserRole.ISSUING_AUTHORITY,
            "doc-1",
            event_key="document_uploaded:doc-1",
            payload={"document_name": "transcript.pdf"},
        )
        second = await recorder.record(
            InteractionType.DOCUMENT_UPLOADED,
            UserRole.RECIPIENT,
            UserRole.ISSUING_AUTHORITY,
            "doc-1",
            event_key="document_uploaded:doc-1",
        )

        assert first["id"] == interaction_id("document_uploaded:doc-1")
        assert first["from_role"] == "recipient"
        assert second is None
        assert await recorder.has_recorded("document_uploaded:doc-1")
        assert not await recorder.has_recorded("document_uploaded:doc-2")

    def test_interaction_id_is_deterministic(self):
        assert interaction_id("a") == interaction_id("a")
        assert interaction_id("a") != interaction_id("b")

    @pytest.mark.asyncio
    async def test_interaction_stats(self, recorder):
        await recorder.record(
            InteractionType.TEMPLATE_CREATED,
            UserRole.ISSUING_AUTHORITY,
            UserRole.CLIENT_REVIEWER,
            "t-1",
            event_key="template_created:t-1:1",
        )
        await recorder.record(
            InteractionType.TEMPLATE_ACTIVATED,
            "system",
            UserRole.ISSUING_AUTHORITY,
            "t-1",
            event_key="template_activated:t-1:1",
        )
        await recorder.record(
            InteractionType.TEMPLATE_CREATED,
            UserRole.ISSUING_AUTHORITY,
            UserRole.CLIENT_REVIEWER,
            "t-2",
            event_key="template_created:t-2:1",
        )

        stats = await recorder.get_interaction_stats()

        assert stats["total"] == 3
        assert stats["by_type"] == {"template_created": 2, "template_activated": 1}
        assert stats["by_role_flow"]["issuing_authority->client_reviewer"] == 2
        assert stats["by_role_flow"]["system->issuing_authority"] == 1
        assert stats["latest_at"] is not None

    @pytest.mark.asyncio
    async def test_stats_respect_limit(self, recorder):
        for n in range(3):
            await recorder.record(
                InteractionType.CERTIFICATE_ISSUED,
                UserRole.ISSUING_AUTHORITY,
                UserRole.RECIPIENT,
                f"c-{n}",
                event_key=f"certificate_issued:c-{n}",
            )

        stats = await recorder.get_interaction_stats(limit=2)

        assert stats["total"] == 2

    @pytest.mark.asyncio
    async def test_empty_stats(self, recorder):
        stats = await recorder.get_interaction_stats()

        assert stats == {"total": 0, "by_type": {}, "by_role_flow": {}, "latest_at": None}
