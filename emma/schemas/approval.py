from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from emma.schemas.action import CandidateAction


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    MODIFIED = "Modified"
    EXPIRED = "Expired"


class ApprovalResponseDecision(str, Enum):
    APPROVE = "Approve"
    REJECT = "Reject"
    MODIFY = "Modify"
    DEFER = "Defer"


class ApprovalRequest(BaseModel):
    """
    Pending human sign-off for one NeedsApproval decision.
    request_id equals the decision's approval_request_id.
    """

    request_id: str
    action: CandidateAction
    tenant_id: str
    trace_id: str
    reason: str
    risk_level: str
    confidence_score: float
    user_id: Optional[str] = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime
    expires_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    decision_reason: Optional[str] = None
    user_overrides: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class ApprovalResponse(BaseModel):
    decision: ApprovalResponseDecision
    actor: str
    reason: Optional[str] = None
    modifications: Dict[str, Any] = Field(default_factory=dict)
    apply_to_similar: bool = False
    defer_minutes: int = 60
