from typing import Any, Dict, Mapping

from certsync.db.models import NotificationKind
from certsync.utils.logging import get_logger

logger = get_logger()


# Subject/body templates per notification kind, formatted with str.format.
MESSAGE_TEMPLATES: Dict[NotificationKind, Dict[str, str]] = {
    NotificationKind.TEMPLATE_REVIEW_REQUEST: {
        "subject": "Template review requested",
        "body": "Template '{template_name}' is waiting for your review.",
    },
    NotificationKind.TEMPLATE_REVIEW_RESULT: {
        "subject": "Template {decision_label}",
        "body": "Your template '{template_name}' was {decision_label} by the client reviewer.{comments_suffix}",
    },
    NotificationKind.TEMPLATE_ACTIVATED: {
        "subject": "Template activated",
        "body": "Your template '{template_name}' is now active and available for issuance.",
    },
    NotificationKind.DOCUMENT_REVIEW_REQUEST: {
        "subject": "Document verification requested",
        "body": "Document '{document_name}' was uploaded and needs verification.",
    },
    NotificationKind.DOCUMENT_VERIFIED: {
        "subject": "Document verified",
        "body": "Your document '{document_name}' has been verified.{comments_suffix}",
    },
    NotificationKind.DOCUMENT_REJECTED: {
        "subject": "Document rejected",
        "body": "Your document '{document_name}' was rejected.{comments_suffix}",
    },
    NotificationKind.CERTIFICATE_RECEIVED: {
        "subject": "New certificate received",
        "body": "You have received the certificate '{certificate_title}'.",
    },
    NotificationKind.STATUS_UPDATE: {
        "subject": "Account status updated",
        "body": "Your account status changed from {old_status} to {new_status}.",
    },
    NotificationKind.WELCOME: {
        "subject": "Welcome aboard",
        "body": "Your {role_label} account is now active. Welcome!",
    },
    NotificationKind.SYSTEM: {
        "subject": "System notice",
        "body": "{message}",
    },
}


def construct_message(kind: NotificationKind, context: Mapping[str, Any]) -> Dict[str, str]:
    """Build {subject, body} for a notification kind from its template."""
    template = MESSAGE_TEMPLATES.get(kind)
    if template is None:
        return {
            "subject": "Notification",
            "body": f"New {kind.value.replace('_', ' ')} notification",
        }

    try:
        return {
            "subject": template["subject"].format(**context),
            "body": template["body"].format(**context),
        }
    except KeyError as e:
        logger.error(f"Template error for {kind.value}: missing {e}")
        return {"subject": template["subject"], "body": template["body"]}
