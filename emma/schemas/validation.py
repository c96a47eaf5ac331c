from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from emma.utils.override_utils import validate_user_overrides


# -------------------------
# Enums
# -------------------------
class UserOverrideMode(str, Enum):
    ALWAYS_ASK = "AlwaysAsk"
    NEVER_ASK = "NeverAsk"
    LLM_DECISION = "LLMDecision"
    RISK_BASED = "RiskBased"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        for level in cls:
            if level.value.lower() == str(value).strip().lower():
                return level
        raise ValueError(f"Unknown risk level: {value}")


_RISK_RANK = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class DecisionOutcome(str, Enum):
    APPROVED = "Approved"
    NEEDS_APPROVAL = "NeedsApproval"
    REJECTED = "Rejected"


# policy_applied value when the relevance check rejected the action
RELEVANCE_POLICY = "Relevance"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------
# Context
# -------------------------
class ValidationContext(BaseModel):
    """Per-request envelope supplied by the agent orchestrator."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    agent_id: str
    trace_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    override_mode: Optional[UserOverrideMode] = None
    user_id: Optional[str] = None
    user_overrides: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_overrides")
    @classmethod
    def check_user_overrides(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        ok, issues = validate_user_overrides(v)
        if not ok:
            raise ValueError("; ".join(issues))
        return v


# -------------------------
# Outputs
# -------------------------
class ValidationDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    action_id: str
    action_type: str
    outcome: DecisionOutcome
    reason: str = Field(min_length=1)
    risk_level: RiskLevel
    confidence_score: float
    policy_applied: str
    trace_id: str
    tenant_id: str
    approval_request_id: Optional[str] = None
    decided_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_executable(self) -> bool:
        return self.outcome == DecisionOutcome.APPROVED


class ValidationErrorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    error_type: Literal["InputValidationError"] = "InputValidationError"
    message: str
    trace_id: str
    action_id: Optional[str] = None


ValidationResult = Union[ValidationDecision, ValidationErrorEntry]
