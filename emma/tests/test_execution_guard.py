import pytest

from emma.core.exceptions import ExecutionBlockedError
from emma.schemas.action import CandidateAction
from emma.schemas.approval import ApprovalResponse
from emma.schemas.validation import DecisionOutcome
from emma.services.audit_service import AuditService
from emma.services.decision_status_service import DecisionStatusService
from emma.services.execution_guard import ExecutionGuard
from emma.tests.conftest import FailingAuditRepository


@pytest.fixture
def guard(approvals, audit):
    return ExecutionGuard(approvals, audit)


def test_approved_action_passes(guard, orchestrator, make_context):
    action = CandidateAction(action_type="LogNote", confidence_score=0.99)
    decision = orchestrator.validate_action(action, make_context("RiskBased"))

    assert guard.ensure_executable(action, decision) is action


def test_rejected_action_is_blocked(guard, orchestrator, make_context):
    first = CandidateAction(action_type="SendFollowUpEmail", contact_id="c-1")
    dup = CandidateAction(action_type="SendFollowUpEmail", contact_id="c-1")
    orchestrator.validate_action(first, make_context("NeverAsk"))
    decision = orchestrator.validate_action(dup, make_context("NeverAsk"))

    with pytest.raises(ExecutionBlockedError) as exc:
        guard.ensure_executable(dup, decision)
    assert exc.value.action_id == dup.action_id


def test_pending_approval_blocks_until_granted(guard, orchestrator, make_context, approvals):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    decision = orchestrator.validate_action(action, make_context("RiskBased"))

    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, decision)

    approvals.respond(decision.approval_request_id, ApprovalResponse(decision="Approve", actor="broker"))

    assert guard.ensure_executable(action, decision) is action


def test_modified_approval_releases_modified_action(guard, orchestrator, make_context, approvals):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95, description="Send offer")
    decision = orchestrator.validate_action(action, make_context("RiskBased"))

    approvals.respond(
        decision.approval_request_id,
        ApprovalResponse(decision="Modify", actor="broker", modifications={"description": "Send revised offer"}),
    )

    released = guard.ensure_executable(action, decision)
    assert released.action_id == action.action_id
    assert released.description == "Send revised offer"


@pytest.mark.parametrize("answer", [
    ApprovalResponse(decision="Reject", actor="broker", reason="not now"),
    ApprovalResponse(decision="Defer", actor="broker"),
])
def test_rejected_or_deferred_request_keeps_blocking(guard, orchestrator, make_context, approvals, answer):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    decision = orchestrator.validate_action(action, make_context("RiskBased"))
    approvals.respond(decision.approval_request_id, answer)

    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, decision)


def test_missing_or_foreign_decision_is_blocked(guard, orchestrator, make_context):
    action = CandidateAction(action_type="LogNote", confidence_score=0.99)
    other = CandidateAction(action_type="LogNote", confidence_score=0.99)
    decision = orchestrator.validate_action(other, make_context("RiskBased"))

    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, None)
    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, decision)


def test_needs_approval_without_stored_request_is_blocked(guard, orchestrator, make_context):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    decision = orchestrator.validate_action(action, make_context("RiskBased"))

    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, decision.model_copy(update={"approval_request_id": None}))
    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, decision.model_copy(update={"approval_request_id": "APR-unknown"}))


def test_forged_approval_of_rejected_action_is_blocked(guard, orchestrator, make_context):
    first = CandidateAction(action_type="SendFollowUpEmail", contact_id="c-1")
    dup = CandidateAction(action_type="SendFollowUpEmail", contact_id="c-1")
    orchestrator.validate_action(first, make_context("NeverAsk"))
    rejected = orchestrator.validate_action(dup, make_context("NeverAsk"))
    forged = rejected.model_copy(update={"outcome": DecisionOutcome.APPROVED})

    with pytest.raises(ExecutionBlockedError) as exc:
        guard.ensure_executable(dup, forged)
    assert "recorded decision" in exc.value.message


def test_forged_approval_of_pending_action_is_blocked(guard, orchestrator, make_context):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    pending = orchestrator.validate_action(action, make_context("RiskBased"))
    forged = pending.model_copy(update={"outcome": DecisionOutcome.APPROVED, "approval_request_id": None})

    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(action, forged)


def test_decision_without_audit_record_is_blocked(guard, make_orchestrator, make_context):
    unaudited = make_orchestrator(audit=AuditService(FailingAuditRepository()))
    action = CandidateAction(action_type="LogNote", confidence_score=0.99)
    decision = unaudited.validate_action(action, make_context("RiskBased"))

    assert decision.outcome == DecisionOutcome.APPROVED
    with pytest.raises(ExecutionBlockedError) as exc:
        guard.ensure_executable(action, decision)
    assert "no recorded validation decision" in exc.value.message


def test_approval_of_another_action_does_not_clear(guard, orchestrator, make_context, approvals):
    a = CandidateAction(action_type="ScheduleFollowUp", contact_id="c-1", confidence_score=0.9)
    b = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    decision_a = orchestrator.validate_action(a, make_context("AlwaysAsk"))
    decision_b = orchestrator.validate_action(b, make_context("RiskBased"))
    approvals.respond(decision_a.approval_request_id, ApprovalResponse(decision="Approve", actor="broker"))

    borrowed = decision_b.model_copy(update={"approval_request_id": decision_a.approval_request_id})
    with pytest.raises(ExecutionBlockedError):
        guard.ensure_executable(b, borrowed)


def test_recorded_request_of_another_action_does_not_clear(guard, orchestrator, make_context, approvals, audit):
    a = CandidateAction(action_type="ScheduleFollowUp", contact_id="c-1", confidence_score=0.9)
    b = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    decision_a = orchestrator.validate_action(a, make_context("AlwaysAsk"))
    decision_b = orchestrator.validate_action(b, make_context("RiskBased"))
    approvals.respond(decision_a.approval_request_id, ApprovalResponse(decision="Approve", actor="broker"))

    # trail entry for b that names a's request
    crossed = decision_b.model_copy(update={"approval_request_id": decision_a.approval_request_id})
    audit.record_decision(crossed, make_context("RiskBased"))

    with pytest.raises(ExecutionBlockedError) as exc:
        guard.ensure_executable(b, crossed)
    assert "belongs to another action" in exc.value.message


# -------------------------------------------------
# Status derived from the audit trail
# -------------------------------------------------

def test_status_follows_audit_trail(orchestrator, make_context, approvals, audit):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)

    assert DecisionStatusService.derive(audit.list_by_action(action.action_id))["status"] == "NO_DECISION"

    decision = orchestrator.validate_action(action, make_context("RiskBased"))
    pending = DecisionStatusService.derive(audit.list_by_action(action.action_id))
    assert pending["status"] == "PENDING_APPROVAL"
    assert pending["approval_request_id"] == decision.approval_request_id

    approvals.respond(decision.approval_request_id, ApprovalResponse(decision="Approve", actor="broker", reason="ok"))
    cleared = DecisionStatusService.derive(audit.list_by_action(action.action_id))
    assert cleared["status"] == "CLEARED"
    assert cleared["decided_by"] == "broker"


def test_status_of_expired_request(orchestrator, make_context, approvals, audit, clock):
    action = CandidateAction(action_type="SendFinancialDocument", confidence_score=0.95)
    orchestrator.validate_action(action, make_context("AlwaysAsk"))
    clock.advance(days=2)
    approvals.expire_stale()

    assert DecisionStatusService.derive(audit.list_by_action(action.action_id))["status"] == "EXPIRED"
