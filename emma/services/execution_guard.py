import logging
from typing import Optional

from emma.core.exceptions import ApprovalRequestError, ExecutionBlockedError
from emma.schemas.action import CandidateAction
from emma.schemas.approval import ApprovalStatus
from emma.schemas.validation import DecisionOutcome, ValidationDecision
from emma.services.approval_service import ApprovalService
from emma.services.audit_service import AuditService
from emma.services.decision_status_service import DecisionStatusService

logger = logging.getLogger(__name__)


class ExecutionGuard:
    """
    Last check before an action leaves for the CRM or an external channel.

    The decision handed in must match the decision recorded in the audit
    trail for that action; an action without a recorded decision never
    passes. Rejected never passes. NeedsApproval passes only once the
    approval request of that same action was approved or modified; the
    modified action is returned in that case.
    """

    def __init__(self, approvals: ApprovalService, audit: AuditService):
        self.approvals = approvals
        self.audit = audit

    def ensure_executable(
        self,
        action: CandidateAction,
        decision: Optional[ValidationDecision],
    ) -> CandidateAction:
        if decision is None:
            self._block(action, "no validation decision")

        if decision.action_id != action.action_id:
            self._block(action, f"decision belongs to action {decision.action_id}")

        self._check_recorded(action, decision)

        if decision.outcome == DecisionOutcome.REJECTED:
            self._block(action, f"action was rejected: {decision.reason}")

        if decision.outcome == DecisionOutcome.APPROVED:
            return action

        if not decision.approval_request_id:
            self._block(action, "approval required but no approval request exists")

        try:
            request = self.approvals.get(decision.approval_request_id)
        except ApprovalRequestError:
            self._block(action, f"approval request {decision.approval_request_id} not found")

        if request.action.action_id != action.action_id or request.tenant_id != decision.tenant_id:
            self._block(action, f"approval request {request.request_id} belongs to another action")

        if request.status == ApprovalStatus.APPROVED:
            return action
        if request.status == ApprovalStatus.MODIFIED:
            return request.action

        self._block(action, f"approval request {request.request_id} is {request.status.value}")

    def _check_recorded(self, action: CandidateAction, decision: ValidationDecision) -> None:
        recorded = DecisionStatusService.latest_decision(self.audit.list_by_action(action.action_id))
        if recorded is None:
            self._block(action, "no recorded validation decision")

        payload = recorded.get("payload") or {}
        if (
            payload.get("outcome") != decision.outcome.value
            or payload.get("approval_request_id") != decision.approval_request_id
            or recorded.get("tenant_id") != decision.tenant_id
        ):
            self._block(
                action,
                f"decision does not match the recorded decision ({payload.get('outcome')})",
            )

    @staticmethod
    def _block(action: CandidateAction, reason: str) -> None:
        logger.warning(
            "Execution blocked",
            extra={"props": {"action_id": action.action_id, "reason": reason}},
        )
        raise ExecutionBlockedError(f"Execution blocked for {action.action_id}: {reason}", action_id=action.action_id)
