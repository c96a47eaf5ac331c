from __future__ import annotations

import uuid
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ActionPriority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    URGENT = 3


class CandidateAction(BaseModel):
    """
    AI-proposed action awaiting validation.

    Content fields are owned by the originating agent. The pipeline only
    writes the three annotation fields at the bottom.
    """

    action_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action_type: str = ""
    description: str = ""
    confidence_score: Any = 0.0
    priority: ActionPriority = ActionPriority.MEDIUM
    parameters: Dict[str, Any] = Field(default_factory=dict)

    contact_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    source_agent: Optional[str] = None

    # -------------------------
    # Set by the pipeline
    # -------------------------
    requires_approval: bool = False
    approval_request_id: Optional[str] = None
    validation_reason: Optional[str] = None

    @property
    def target_contact_id(self) -> Optional[str]:
        if self.contact_id:
            return self.contact_id
        for key in ("contact_id", "contactId"):
            value = self.parameters.get(key)
            if value:
                return str(value)
        return None

    @property
    def normalized_type(self) -> str:
        return self.action_type.strip().lower()
