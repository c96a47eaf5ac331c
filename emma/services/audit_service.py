import logging
from typing import List, Optional

from emma.core.exceptions import AuditWriteError
from emma.repositories.audit_base import AuditRepository
from emma.schemas.validation import (
    DecisionOutcome,
    ValidationContext,
    ValidationDecision,
    ValidationErrorEntry,
)
from emma.utils.json_utils import to_jsonable
from emma.utils.override_utils import serialize_for_audit_log

logger = logging.getLogger(__name__)

OUTCOME_EVENT_TYPES = {
    DecisionOutcome.APPROVED: "ACTION_APPROVED",
    DecisionOutcome.NEEDS_APPROVAL: "ACTION_NEEDS_APPROVAL",
    DecisionOutcome.REJECTED: "ACTION_REJECTED",
}


class AuditService:
    """
    Best-effort audit writer.

    write() never raises: an unavailable sink degrades observability,
    not the decision handed back to the caller.
    """

    def __init__(self, repo: AuditRepository):
        self.repo = repo

    def write(
        self,
        *,
        trace_id: str,
        event_type: str,
        payload: dict,
        actor: str = "SYSTEM",
        tenant_id: Optional[str] = None,
    ) -> bool:
        try:
            try:
                self.repo.append_event(
                    trace_id=trace_id,
                    event_type=event_type,
                    actor=actor,
                    payload=to_jsonable(payload),
                    tenant_id=tenant_id,
                )
            except Exception as e:
                raise AuditWriteError(f"Audit write failed for {event_type}: {e}") from e
        except AuditWriteError:
            logger.exception(
                "Audit write failed",
                extra={"props": {"trace_id": trace_id, "event_type": event_type}},
            )
            return False
        return True

    def record_decision(self, decision: ValidationDecision, context: ValidationContext) -> bool:
        payload = {
            "action_id": decision.action_id,
            "action_type": decision.action_type,
            "outcome": decision.outcome,
            "reason": decision.reason,
            "risk_level": decision.risk_level,
            "confidence_score": decision.confidence_score,
            "policy_applied": decision.policy_applied,
            "approval_request_id": decision.approval_request_id,
            "agent_id": context.agent_id,
            "user_id": context.user_id,
            "user_overrides": serialize_for_audit_log(context.user_overrides),
            "decided_at": decision.decided_at,
        }
        return self.write(
            trace_id=context.trace_id,
            event_type=OUTCOME_EVENT_TYPES[decision.outcome],
            payload=payload,
            actor=context.agent_id,
            tenant_id=context.tenant_id,
        )

    def record_input_error(self, entry: ValidationErrorEntry, context: ValidationContext) -> bool:
        return self.write(
            trace_id=context.trace_id,
            event_type="ACTION_INPUT_INVALID",
            payload={
                "action_id": entry.action_id,
                "index": entry.index,
                "error_type": entry.error_type,
                "message": entry.message,
                "agent_id": context.agent_id,
            },
            actor=context.agent_id,
            tenant_id=context.tenant_id,
        )

    def list_by_trace(self, trace_id: str) -> List[dict]:
        return self.repo.list_events(trace_id)

    def list_by_action(self, action_id: str) -> List[dict]:
        return self.repo.list_events_for_action(action_id)
