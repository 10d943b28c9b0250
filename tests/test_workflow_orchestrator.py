import pytest

from certsync.db.models import (
    Collection,
    DocumentStatus,
    InteractionType,
    NotificationKind,
    ReviewDecision,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.services.activity_recorder import interaction_id
from certsync.utils.errors import EntityNotFoundError, InvalidTransitionError


async def _notifications_for(store, user_id: str) -> list:
    return await store.query(
        Collection.NOTIFICATIONS, {"user_id": user_id}, order_by="created_at"
    )


class TestTemplateSubmission:
    """Test fan-out when a template is submitted for review."""

    @pytest.mark.asyncio
    async def test_one_notification_per_active_reviewer(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])

        result = await orchestrator.on_template_created(template)

        assert result.recorded is True
        assert result.notified == 3
        notifications = await store.query(
            Collection.NOTIFICATIONS, {"kind": NotificationKind.TEMPLATE_REVIEW_REQUEST}
        )
        assert {n["user_id"] for n in notifications} == {r["id"] for r in client_reviewers}
        assert all(n["data"]["template_id"] == template["id"] for n in notifications)
        assert await store.count(Collection.INTERACTIONS) == 1

    @pytest.mark.asyncio
    async def test_redelivery_does_not_duplicate(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])

        await orchestrator.on_template_created(template)
        repeat = await orchestrator.on_template_created(template["id"])

        assert repeat.recorded is False
        assert repeat.notified == 0
        assert await store.count(Collection.NOTIFICATIONS) == 3
        assert await store.count(Collection.INTERACTIONS) == 1

    @pytest.mark.asyncio
    async def test_status_left_unchanged(self, store, orchestrator, factory, ca_user):
        template = await factory.template(ca_user["id"])

        result = await orchestrator.on_template_created(template)

        assert result.status == TemplateStatus.PENDING_REVIEW.value
        assert result.notified == 0
        stored = await store.get(Collection.TEMPLATES, template["id"])
        assert stored["status"] == TemplateStatus.PENDING_REVIEW


class TestTemplateReview:
    """Test client review decisions and activation."""

    @pytest.mark.asyncio
    async def test_approval_activates_and_notifies_owner_in_order(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])
        reviewer = client_reviewers[0]

        result = await orchestrator.on_template_reviewed(
            template["id"], reviewer["id"], ReviewDecision.APPROVED
        )

        assert result.applied is True
        assert result.status == TemplateStatus.ACTIVE.value
        assert result.notified == 2

        stored = await store.get(Collection.TEMPLATES, template["id"])
        assert stored["status"] == TemplateStatus.ACTIVE
        assert stored["client_reviewer_id"] == reviewer["id"]
        assert stored["client_approved_at"] is not None
        assert stored["activated_at"] is not None

        kinds = [n["kind"] for n in await _notifications_for(store, ca_user["id"])]
        assert kinds == [
            NotificationKind.TEMPLATE_REVIEW_RESULT,
            NotificationKind.TEMPLATE_ACTIVATED,
        ]

        interactions = await store.query(Collection.INTERACTIONS, order_by="timestamp")
        assert [i["type"] for i in interactions] == [
            InteractionType.TEMPLATE_REVIEWED,
            InteractionType.TEMPLATE_ACTIVATED,
        ]
        assert interactions[1]["from_role"] == "system"

    @pytest.mark.asyncio
    async def test_repeated_approval_is_noop(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])
        await orchestrator.on_template_reviewed(
            template["id"], client_reviewers[0]["id"], ReviewDecision.APPROVED
        )

        repeat = await orchestrator.on_template_reviewed(
            template["id"], client_reviewers[1]["id"], "approved"
        )

        assert repeat.applied is False
        assert repeat.notified == 0
        assert repeat.status == TemplateStatus.ACTIVE.value
        assert len(await _notifications_for(store, ca_user["id"])) == 2

    @pytest.mark.asyncio
    async def test_rejection_notifies_owner_with_comments(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])

        result = await orchestrator.on_template_reviewed(
            template["id"],
            client_reviewers[0]["id"],
            ReviewDecision.REJECTED,
            comments="Logo is blurry",
        )

        assert result.status == TemplateStatus.REJECTED.value
        assert result.notified == 1
        [notification] = await _notifications_for(store, ca_user["id"])
        assert notification["kind"] == NotificationKind.TEMPLATE_REVIEW_RESULT
        assert "Logo is blurry" in notification["message"]
        assert notification["data"]["decision"] == "rejected"

        with pytest.raises(InvalidTransitionError):
            await orchestrator.activate_template(template["id"])

    @pytest.mark.asyncio
    async def test_needs_revision(
        self, store, orchestrator, factory, ca_user, client_reviewers
    ):
        template = await factory.template(ca_user["id"])

        result = await orchestrator.on_template_reviewed(
            template["id"], client_reviewers[0]["id"], ReviewDecision.NEEDS_REVISION
        )

        assert result.status == TemplateStatus.NEEDS_REVISION.value
        stored = await store.get(Collection.TEMPLATES, template["id"])
        assert stored["client_approved_at"] is None

    @pytest.mark.asyncio
    async def test_reviewer_role_is_enforced(
        self, store, orchestrator, factory, ca_user, recipient_user
    ):
        template = await factory.template(ca_user["id"])

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_template_reviewed(
                template["id"], recipient_user["id"], ReviewDecision.APPROVED
            )

        stored = await store.get(Collection.TEMPLATES, template["id"])
        assert stored["status"] == TemplateStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_unknown_reviewer(self, orchestrator, factory, ca_user):
        template = await factory.template(ca_user["id"])

        with pytest.raises(EntityNotFoundError):
            await orchestrator.on_template_reviewed(
                template["id"], "missing-user", ReviewDecision.APPROVED
            )

    @pytest.mark.asyncio
    async def test_activate_requires_client_approval(
        self, store, orchestrator, factory, ca_user
    ):
        template = await factory.template(ca_user["id"])

        with pytest.raises(InvalidTransitionError):
            await orchestrator.activate_template(template["id"])

        stored = await store.get(Collection.TEMPLATES, template["id"])
        assert stored["status"] == TemplateStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_activate_missing_template(self, orchestrator):
        with pytest.raises(EntityNotFoundError):
            await orchestrator.activate_template("missing-template")

    @pytest.mark.asyncio
    async def test_activate_twice_notifies_once(
        self, store, orchestrator, factory, ca_user
    ):
        template = await factory.template(
            ca_user["id"], status=TemplateStatus.CLIENT_APPROVED
        )

        first = await orchestrator.activate_template(template["id"])
        second = await orchestrator.activate_template(template["id"])

        assert first.applied is True
        assert first.notified == 1
        assert second.applied is False
        assert second.notified == 0
        assert len(await _notifications_for(store, ca_user["id"])) == 1


class TestDocumentUpload:
    """Test document upload handling."""

    @pytest.mark.asyncio
    async def test_without_issuing_authorities(
        self, store, orchestrator, factory, recipient_user
    ):
        document = await factory.document(recipient_user["id"])

        result = await orchestrator.on_document_uploaded(document)

        assert result.applied is True
        assert result.notified == 0
        assert result.status == DocumentStatus.PENDING.value
        stored = await store.get(Collection.DOCUMENTS, document["id"])
        assert stored["status"] == DocumentStatus.PENDING
        assert await store.count(Collection.NOTIFICATIONS) == 0

    @pytest.mark.asyncio
    async def test_notifies_active_issuing_authorities(
        self, store, orchestrator, factory, recipient_user, ca_user
    ):
        await factory.user(UserRole.ISSUING_AUTHORITY)
        await factory.user(UserRole.ISSUING_AUTHORITY, status=UserStatus.PENDING)
        document = await factory.document(recipient_user["id"])

        result = await orchestrator.on_document_uploaded(document)

        assert result.notified == 2
        interaction = await store.get(
            Collection.INTERACTIONS, interaction_id(f"document_uploaded:{document['id']}")
        )
        assert interaction["from_role"] == UserRole.RECIPIENT.value
        assert interaction["to_role"] == UserRole.ISSUING_AUTHORITY.value

    @pytest.mark.asyncio
    async def test_double_delivery_is_idempotent(
        self, store, orchestrator, factory, recipient_user, ca_user
    ):
        document = await factory.document(recipient_user["id"])

        first = await orchestrator.on_document_uploaded(document)
        second = await orchestrator.on_document_uploaded(document)

        assert first.notified == 1
        assert second.applied is False
        assert second.recorded is False
        assert second.notified == 0
        assert await store.count(Collection.NOTIFICATIONS) == 1
        assert await store.count(Collection.INTERACTIONS) == 1

    @pytest.mark.asyncio
    async def test_missing_document_is_fatal(self, orchestrator):
        with pytest.raises(EntityNotFoundError):
            await orchestrator.on_document_uploaded("missing-document")

    @pytest.mark.asyncio
    async def test_reviewed_document_is_left_alone(
        self, store, orchestrator, factory, recipient_user, ca_user
    ):
        document = await factory.document(
            recipient_user["id"],
            status=DocumentStatus.VERIFIED,
            verifier_id=ca_user["id"],
        )

        result = await orchestrator.on_document_uploaded(document)

        assert result.status == DocumentStatus.VERIFIED.value
        assert result.notified == 0
        assert await store.count(Collection.INTERACTIONS) == 0

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_transition(
        self, store, orchestrator, factory, recipient_user, ca_user, monkeypatch
    ):
        document = await factory.document(recipient_user["id"])

        async def failing_batch(items):
            raise RuntimeError("notification store unavailable")

        monkeypatch.setattr(store, "batch_write", failing_batch)
        result = await orchestrator.on_document_uploaded(document)

        assert result.applied is True
        assert result.recorded is True
        assert result.notified == 0
        stored = await store.get(Collection.DOCUMENTS, document["id"])
        assert stored["status"] == DocumentStatus.PENDING


class TestDocumentReview:
    """Test verification decisions on documents."""

    @pytest.mark.asyncio
    async def test_verification_notifies_uploader(
        self, store, orchestrator, factory, recipient_user, ca_user
    ):
        document = await factory.document(recipient_user["id"])
        await orchestrator.on_document_uploaded(document)

        result = await orchestrator.on_document_reviewed(
            document["id"], ca_user["id"], ReviewDecision.APPROVED, comments="Looks good"
        )

        assert result.applied is True
        assert result.status == DocumentStatus.VERIFIED.value
        assert result.notified == 1
        stored = await store.get(Collection.DOCUMENTS, document["id"])
        assert stored["verifier_id"] == ca_user["id"]
        assert stored["reviewed_at"] is not None

        [notification] = await _notifications_for(store, recipient_user["id"])
        assert notification["kind"] == NotificationKind.DOCUMENT_VERIFIED
        assert "Looks good" in notification["message"]

        repeat = await orchestrator.on_document_review_recorded(document["id"])
        assert repeat.notified == 0

    @pytest.mark.asyncio
    async def test_rejection(self, store, orchestrator, factory, recipient_user, ca_user):
        document = await factory.document(recipient_user["id"], status=DocumentStatus.PENDING)

        result = await orchestrator.on_document_reviewed(
            document["id"], ca_user["id"], "rejected"
        )

        assert result.status == DocumentStatus.REJECTED.value
        [notification] = await _notifications_for(store, recipient_user["id"])
        assert notification["kind"] == NotificationKind.DOCUMENT_REJECTED

    @pytest.mark.asyncio
    async def test_needs_revision_does_not_apply(
        self, orchestrator, factory, recipient_user, ca_user
    ):
        document = await factory.document(recipient_user["id"], status=DocumentStatus.PENDING)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_document_reviewed(
                document["id"], ca_user["id"], ReviewDecision.NEEDS_REVISION
            )

    @pytest.mark.asyncio
    async def test_verifier_role_is_enforced(
        self, orchestrator, factory, recipient_user, client_reviewers
    ):
        document = await factory.document(recipient_user["id"], status=DocumentStatus.PENDING)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_document_reviewed(
                document["id"], client_reviewers[0]["id"], ReviewDecision.APPROVED
            )

    @pytest.mark.asyncio
    async def test_cannot_verify_before_pending(
        self, store, orchestrator, factory, recipient_user, ca_user
    ):
        document = await factory.document(recipient_user["id"])

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_document_reviewed(
                document["id"], ca_user["id"], ReviewDecision.APPROVED
            )

        stored = await store.get(Collection.DOCUMENTS, document["id"])
        assert stored["status"] == DocumentStatus.UPLOADED


class TestCertificateIssuance:
    """Test recipient linking when a certificate is issued."""

    @pytest.mark.asyncio
    async def test_unknown_email_creates_recipient(
        self, store, orchestrator, factory, ca_user
    ):
        certificate = await factory.certificate(ca_user["id"], recipient_email="x@y.com")

        result = await orchestrator.on_certificate_issued(certificate)

        [user] = await store.query(Collection.USERS, {"email": "x@y.com"})
        assert user["role"] == UserRole.RECIPIENT
        assert user["status"] == UserStatus.ACTIVE
        stored = await store.get(Collection.CERTIFICATES, certificate["id"])
        assert stored["recipient_id"] == user["id"]
        assert result.applied is True
        assert result.notified == 1

        [notification] = await _notifications_for(store, user["id"])
        assert notification["kind"] == NotificationKind.CERTIFICATE_RECEIVED

    @pytest.mark.asyncio
    async def test_known_email_links_existing_user(
        self, store, orchestrator, factory, ca_user, recipient_user
    ):
        certificate = await factory.certificate(
            ca_user["id"], recipient_email="U1@certsync.test"
        )

        await orchestrator.on_certificate_issued(certificate["id"])

        stored = await store.get(Collection.CERTIFICATES, certificate["id"])
        assert stored["recipient_id"] == recipient_user["id"]
        assert await store.count(Collection.USERS, {"role": UserRole.RECIPIENT}) == 1

    @pytest.mark.asyncio
    async def test_already_linked(self, orchestrator, factory, ca_user, recipient_user):
        certificate = await factory.certificate(
            ca_user["id"], recipient_id=recipient_user["id"]
        )

        result = await orchestrator.on_certificate_issued(certificate)

        assert result.applied is False
        assert result.notified == 1

    @pytest.mark.asyncio
    async def test_redelivery_creates_one_user_and_one_notification(
        self, store, orchestrator, factory, ca_user
    ):
        certificate = await factory.certificate(ca_user["id"], recipient_email="x@y.com")

        await orchestrator.on_certificate_issued(certificate)
        repeat = await orchestrator.on_certificate_issued(certificate)

        assert repeat.applied is False
        assert repeat.notified == 0
        assert await store.count(Collection.USERS, {"email": "x@y.com"}) == 1
        assert await store.count(Collection.NOTIFICATIONS) == 1

    @pytest.mark.asyncio
    async def test_invalid_email(self, orchestrator, factory, ca_user):
        certificate = await factory.certificate(ca_user["id"], recipient_email="not-an-email")

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_certificate_issued(certificate)

    @pytest.mark.asyncio
    async def test_no_recipient_at_all(self, orchestrator, factory, ca_user):
        certificate = await factory.certificate(ca_user["id"])

        with pytest.raises(EntityNotFoundError):
            await orchestrator.on_certificate_issued(certificate)


class TestUserStatusChanges:
    """Test account status changes and welcome notifications."""

    @pytest.mark.asyncio
    async def test_activating_issuing_authority_sends_welcome_once(
        self, store, orchestrator, factory, admin_user
    ):
        ca = await factory.user(UserRole.ISSUING_AUTHORITY, status=UserStatus.PENDING)

        activated = await orchestrator.change_user_status(
            ca["id"], UserStatus.ACTIVE, admin_id=admin_user["id"]
        )
        assert activated.applied is True
        assert activated.notified == 2

        await orchestrator.change_user_status(ca["id"], UserStatus.SUSPENDED, admin_user["id"])
        reactivated = await orchestrator.change_user_status(
            ca["id"], UserStatus.ACTIVE, admin_user["id"]
        )
        assert reactivated.notified == 1

        kinds = [n["kind"] for n in await _notifications_for(store, ca["id"])]
        assert kinds.count(NotificationKind.WELCOME) == 1
        assert kinds.count(NotificationKind.STATUS_UPDATE) == 3
        stored = await store.get(Collection.USERS, ca["id"])
        assert stored["welcome_sent_at"] is not None
        assert stored["status"] == UserStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_recipient_activation_has_no_welcome(
        self, store, orchestrator, factory, admin_user
    ):
        user = await factory.user(UserRole.RECIPIENT, status=UserStatus.PENDING)

        result = await orchestrator.change_user_status(
            user["id"], UserStatus.ACTIVE, admin_id=admin_user["id"]
        )

        assert result.notified == 1
        interaction = (await store.query(Collection.INTERACTIONS))[0]
        assert interaction["from_role"] == UserRole.ADMINISTRATOR.value
        assert interaction["to_role"] == UserRole.RECIPIENT.value

    @pytest.mark.asyncio
    async def test_same_status_is_noop(self, store, orchestrator, recipient_user):
        result = await orchestrator.change_user_status(recipient_user["id"], "active")

        assert result.applied is False
        assert await store.count(Collection.INTERACTIONS) == 0

    @pytest.mark.asyncio
    async def test_acting_user_must_be_administrator(
        self, orchestrator, factory, ca_user
    ):
        user = await factory.user(UserRole.RECIPIENT, status=UserStatus.PENDING)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.change_user_status(
                user["id"], UserStatus.ACTIVE, admin_id=ca_user["id"]
            )

    @pytest.mark.asyncio
    async def test_status_change_redelivery(self, store, orchestrator, factory):
        user = await factory.user(UserRole.CLIENT_REVIEWER, status=UserStatus.PENDING)
        await store.update(Collection.USERS, user["id"], {"status": UserStatus.ACTIVE})
        changed = await store.get(Collection.USERS, user["id"])

        first = await orchestrator.on_user_status_changed(
            user["id"], "pending", "active", changed_at=changed["updated_at"]
        )
        second = await orchestrator.on_user_status_changed(
            user["id"], "pending", "active", changed_at=changed["updated_at"]
        )

        assert first.notified == 2
        assert second.recorded is False
        assert second.notified == 0
