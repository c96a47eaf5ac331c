import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from emma.dependencies import get_audit_service, get_orchestrator
from emma.schemas.action import CandidateAction
from emma.schemas.validation import ValidationContext, ValidationDecision
from emma.services.audit_service import AuditService
from emma.services.decision_status_service import DecisionStatusService
from emma.services.validation_orchestrator import ActionValidationOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["validation"])


# =====================================================
# Schemas
# =====================================================

class ValidateActionsRequest(BaseModel):
    context: ValidationContext
    # raw items so a malformed one is reported per item instead of failing the request
    actions: List[Optional[Dict[str, Any]]]


class ValidateActionsResponse(BaseModel):
    trace_id: str
    results: List[Dict[str, Any]]


class ClearanceRequest(BaseModel):
    action: CandidateAction
    decision: Optional[ValidationDecision] = None


# =====================================================
# Routes
# =====================================================

@router.post("/actions", response_model=ValidateActionsResponse)
def validate_actions(
    body: ValidateActionsRequest,
    orchestrator: ActionValidationOrchestrator = Depends(get_orchestrator),
):
    results = orchestrator.validate_actions(body.actions, body.context)
    return {
        "trace_id": body.context.trace_id,
        "results": [r.model_dump(mode="json") for r in results],
    }


@router.get("/actions/{action_id}/status")
def action_status(
    action_id: str,
    audit: AuditService = Depends(get_audit_service),
):
    events = audit.list_by_action(action_id)
    return {"action_id": action_id, **DecisionStatusService.derive(events)}


@router.post("/clearance")
def clearance(body: ClearanceRequest, request: Request):
    """ExecutionBlockedError maps to 409."""
    guard = request.app.state.execution_guard
    action = guard.ensure_executable(body.action, body.decision)
    return {"cleared": True, "action": action.model_dump(mode="json")}
