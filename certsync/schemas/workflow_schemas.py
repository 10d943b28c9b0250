from typing import Optional
from pydantic import Field

from certsync.db.models import ReviewDecision, UserStatus
from .camel_base_model import CamelCaseBaseModel as BaseModel


class HandlerResult(BaseModel):
    """Outcome of one workflow handler invocation"""

    entity_id: str = Field(..., description="Entity the handler acted on")
    applied: bool = Field(
        False, description="Whether this call applied the status transition"
    )
    recorded: bool = Field(
        False, description="Whether this call wrote the interaction record"
    )
    notified: int = Field(0, description="Notifications written by this call")
    status: Optional[str] = Field(None, description="Entity status after the call")


class TemplateReviewRequest(BaseModel):
    """Client reviewer decision on a template"""

    reviewer_id: str = Field(..., description="Reviewing user ID")
    decision: ReviewDecision = Field(..., description="Review decision")
    comments: Optional[str] = Field(None, max_length=2000, description="Comments")


class DocumentReviewRequest(BaseModel):
    """Issuing authority verification of a document"""

    verifier_id: str = Field(..., description="Verifying user ID")
    decision: ReviewDecision = Field(..., description="approved or rejected")
    comments: Optional[str] = Field(None, max_length=2000, description="Comments")


class UserStatusChangeRequest(BaseModel):
    """Administrative account status change"""

    status: UserStatus = Field(..., description="Target account status")
    admin_id: Optional[str] = Field(None, description="Acting administrator ID")
