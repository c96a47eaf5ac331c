from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from pydantic import ValidationError

from emma.core.exceptions import InputValidationError
from emma.repositories.recent_actions_base import RecentActionStore
from emma.schemas.action import CandidateAction
from emma.schemas.validation import (
    RELEVANCE_POLICY,
    DecisionOutcome,
    ValidationContext,
    ValidationDecision,
    ValidationErrorEntry,
    ValidationResult,
)
from emma.services.approval_policy import ApprovalPolicyEngine, LLMDecisionClient
from emma.services.approval_service import ApprovalService
from emma.services.assessors import (
    Assessment,
    ConfidenceAssessor,
    RelevanceAssessor,
    RiskAssessor,
)
from emma.services.audit_service import AuditService
from emma.services.policy_loader import ValidationPolicy
from emma.utils.id_generator import generate_approval_request_id

logger = logging.getLogger(__name__)

FALLBACK_REASON = "Validation error - requires manual review"


class ActionValidationOrchestrator:
    """
    Single gate every agent-proposed action passes before execution.

    Per action:
    1. input check        -> ValidationErrorEntry, siblings continue
    2. confidence clamp
    3. relevance          -> Rejected, stop
    4. risk
    5. approval policy    -> Approved | NeedsApproval (+ approval request id)
    6. annotate action, open approval request, audit (best effort)
    """

    def __init__(
        self,
        *,
        policy: ValidationPolicy,
        audit: AuditService,
        recent_actions: RecentActionStore,
        approvals: Optional[ApprovalService] = None,
        llm_client: Optional[LLMDecisionClient] = None,
        llm_timeout_seconds: float = 10.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.policy = policy
        self.audit = audit
        self.approvals = approvals
        self.risk_assessor = RiskAssessor(policy.risk_table)
        self.relevance_assessor = RelevanceAssessor(
            recent_actions,
            window_minutes=policy.duplicate_window_minutes,
            clock=clock,
        )
        self.policy_engine = ApprovalPolicyEngine(
            policy,
            llm_client=llm_client,
            llm_timeout_seconds=llm_timeout_seconds,
        )

    # -------------------------------------------------
    # Entry points
    # -------------------------------------------------
    def validate_actions(
        self,
        actions: Iterable[Any],
        context: ValidationContext,
    ) -> List[ValidationResult]:
        """One result per input item, same order as the input."""
        items = list(actions or [])

        logger.info(
            "Validating actions",
            extra={"props": {
                "trace_id": context.trace_id,
                "tenant_id": context.tenant_id,
                "agent_id": context.agent_id,
                "count": len(items),
            }},
        )

        results: List[ValidationResult] = []
        for index, item in enumerate(items):
            try:
                action = self._coerce(item, index)
            except InputValidationError as e:
                entry = ValidationErrorEntry(
                    index=index,
                    message=e.message,
                    trace_id=context.trace_id,
                    action_id=e.action_id,
                )
                logger.warning(
                    "Invalid candidate action",
                    extra={"props": {"trace_id": context.trace_id, "index": index, "error": e.message}},
                )
                self.audit.record_input_error(entry, context)
                results.append(entry)
                continue

            results.append(self._validate_one(action, context))

        outcomes = Counter(
            r.outcome.value if isinstance(r, ValidationDecision) else r.error_type
            for r in results
        )
        logger.info(
            "Validated actions",
            extra={"props": {"trace_id": context.trace_id, **dict(outcomes)}},
        )
        return results

    def validate_action(self, action: Any, context: ValidationContext) -> ValidationDecision:
        """Single action; malformed input raises InputValidationError."""
        return self._validate_one(self._coerce(action, 0), context)

    # -------------------------------------------------
    # Per action
    # -------------------------------------------------
    def _validate_one(self, action: CandidateAction, context: ValidationContext) -> ValidationDecision:
        try:
            decision = self._evaluate(action, context)
        except Exception:
            logger.exception(
                "Error validating action, requiring approval",
                extra={"props": {"trace_id": context.trace_id, "action_id": action.action_id}},
            )
            decision = self._fallback_decision(action, context)

        self._annotate(action, decision)

        if decision.outcome == DecisionOutcome.NEEDS_APPROVAL and self.approvals is not None:
            try:
                self.approvals.open_request(action, decision, context)
            except Exception:
                # without a stored request the execution guard keeps blocking
                logger.exception(
                    "Could not open approval request",
                    extra={"props": {
                        "trace_id": context.trace_id,
                        "action_id": action.action_id,
                        "request_id": decision.approval_request_id,
                    }},
                )

        self.audit.record_decision(decision, context)

        logger.debug(
            "Action validated",
            extra={"props": {
                "trace_id": context.trace_id,
                "action_id": action.action_id,
                "outcome": decision.outcome.value,
                "risk_level": decision.risk_level.value,
                "confidence": decision.confidence_score,
            }},
        )
        return decision

    def _evaluate(self, action: CandidateAction, context: ValidationContext) -> ValidationDecision:
        confidence, clamp_note = ConfidenceAssessor.clamp(action.confidence_score)

        relevance = self.relevance_assessor.check(action, context)
        risk_level, risk_reason = self.risk_assessor.classify(action)

        if not relevance.is_relevant:
            mode = self.policy.resolve_mode(context.tenant_id, context.override_mode)
            reason = (
                f"rejected by relevance check: {relevance.reason} "
                f"(risk={risk_level.value}, confidence={confidence:.2f}, "
                f"policy={RELEVANCE_POLICY}, mode={mode.value})"
            )
            return self._decision(
                action, context,
                outcome=DecisionOutcome.REJECTED,
                reason=_with_note(reason, clamp_note),
                risk_level=risk_level,
                confidence=confidence,
                policy_applied=RELEVANCE_POLICY,
            )

        assessment = Assessment(
            risk_level=risk_level,
            risk_reason=risk_reason,
            confidence=confidence,
            confidence_note=clamp_note,
        )
        result = self.policy_engine.decide(action, assessment, context)

        approval_request_id = None
        if result.outcome == DecisionOutcome.NEEDS_APPROVAL:
            approval_request_id = generate_approval_request_id()

        return self._decision(
            action, context,
            outcome=result.outcome,
            reason=_with_note(result.reason, clamp_note),
            risk_level=risk_level,
            confidence=confidence,
            policy_applied=result.mode.value,
            approval_request_id=approval_request_id,
        )

    def _fallback_decision(self, action: CandidateAction, context: ValidationContext) -> ValidationDecision:
        level = self.policy.risk_table.default_level
        mode = context.override_mode.value if context.override_mode else self.policy.default_mode.value
        return self._decision(
            action, context,
            outcome=DecisionOutcome.NEEDS_APPROVAL,
            reason=f"{FALLBACK_REASON} (risk={level.value}, confidence=0.00, policy={mode})",
            risk_level=level,
            confidence=0.0,
            policy_applied=mode,
            approval_request_id=generate_approval_request_id(),
        )

    @staticmethod
    def _decision(action: CandidateAction, context: ValidationContext, **fields) -> ValidationDecision:
        confidence = fields.pop("confidence")
        return ValidationDecision(
            action_id=action.action_id,
            action_type=action.action_type,
            confidence_score=confidence,
            trace_id=context.trace_id,
            tenant_id=context.tenant_id,
            **fields,
        )

    @staticmethod
    def _annotate(action: CandidateAction, decision: ValidationDecision) -> None:
        action.requires_approval = decision.outcome == DecisionOutcome.NEEDS_APPROVAL
        action.approval_request_id = decision.approval_request_id
        action.validation_reason = decision.reason

    @staticmethod
    def _coerce(item: Any, index: int) -> CandidateAction:
        if item is None:
            raise InputValidationError("candidate action is null", index=index)

        if isinstance(item, dict):
            try:
                item = CandidateAction.model_validate(item)
            except ValidationError as e:
                raise InputValidationError(
                    f"candidate action could not be parsed: {e.errors()[0].get('msg', str(e))}",
                    index=index,
                    action_id=item.get("action_id") if isinstance(item.get("action_id"), str) else None,
                ) from e

        if not isinstance(item, CandidateAction):
            raise InputValidationError(
                f"unsupported candidate action type: {type(item).__name__}",
                index=index,
            )

        if not isinstance(item.action_type, str) or not item.action_type.strip():
            raise InputValidationError(
                "action_type is required",
                index=index,
                action_id=item.action_id,
            )

        return item


def _with_note(reason: str, note: Optional[str]) -> str:
    return f"{reason}; {note}" if note else reason
