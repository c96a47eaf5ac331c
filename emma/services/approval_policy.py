from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from emma.core.exceptions import PolicyEvaluationError
from emma.schemas.action import CandidateAction
from emma.schemas.validation import (
    DecisionOutcome,
    RiskLevel,
    UserOverrideMode,
    ValidationContext,
)
from emma.services.assessors import Assessment
from emma.services.policy_loader import ValidationPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMDecisionResult:
    requires_approval: bool
    reason: str


class LLMDecisionClient(Protocol):
    def decide(
        self,
        action: CandidateAction,
        assessment: Assessment,
        context: ValidationContext,
    ) -> LLMDecisionResult:
        ...


@dataclass(frozen=True)
class PolicyOutcome:
    outcome: DecisionOutcome
    reason: str
    mode: UserOverrideMode


Handler = Callable[[CandidateAction, Assessment, ValidationContext], PolicyOutcome]


class ApprovalPolicyEngine:
    """
    Decide Approved / NeedsApproval for an action that passed relevance.

    Modes dispatch through a handler table. Every failure path lands on
    NeedsApproval; nothing defaults to Approved.
    """

    def __init__(
        self,
        policy: ValidationPolicy,
        llm_client: Optional[LLMDecisionClient] = None,
        llm_timeout_seconds: float = 10.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.policy = policy
        self.llm_client = llm_client
        self.llm_timeout_seconds = llm_timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="llm-decision")
        self._handlers: Dict[UserOverrideMode, Handler] = {
            UserOverrideMode.ALWAYS_ASK: self._always_ask,
            UserOverrideMode.NEVER_ASK: self._never_ask,
            UserOverrideMode.RISK_BASED: self._risk_based,
            UserOverrideMode.LLM_DECISION: self._llm_decision,
        }

    def decide(
        self,
        action: CandidateAction,
        assessment: Assessment,
        context: ValidationContext,
    ) -> PolicyOutcome:
        mode = self.policy.resolve_mode(context.tenant_id, context.override_mode)
        handler = self._handlers.get(mode)
        if handler is None:
            logger.warning(
                "Unknown override mode, requiring approval",
                extra={"props": {"trace_id": context.trace_id, "mode": str(mode)}},
            )
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain(f"unknown override mode {mode!r}, approval required", assessment, str(mode)),
                mode,
            )
        return handler(action, assessment, context)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -------------------------------------------------
    # Strategies
    # -------------------------------------------------
    def _always_ask(self, action, assessment, context) -> PolicyOutcome:
        mode = UserOverrideMode.ALWAYS_ASK
        return PolicyOutcome(
            DecisionOutcome.NEEDS_APPROVAL,
            _explain("every action requires human approval", assessment, mode.value),
            mode,
        )

    def _never_ask(self, action, assessment, context) -> PolicyOutcome:
        mode = UserOverrideMode.NEVER_ASK
        return PolicyOutcome(
            DecisionOutcome.APPROVED,
            _explain("full automation, approval never requested", assessment, mode.value),
            mode,
        )

    def _risk_based(self, action, assessment, context) -> PolicyOutcome:
        mode = UserOverrideMode.RISK_BASED
        level = assessment.risk_level
        action_type = action.normalized_type

        if level == RiskLevel.HIGH:
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain("high-risk actions always require approval", assessment, mode.value),
                mode,
            )

        if action_type in self.policy.always_require_approval:
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain(f"action type '{action.action_type}' always requires approval", assessment, mode.value),
                mode,
            )

        threshold = self.policy.threshold_for(level)
        if assessment.confidence >= threshold:
            return PolicyOutcome(
                DecisionOutcome.APPROVED,
                _explain(f"confidence meets threshold {threshold:.2f}", assessment, mode.value),
                mode,
            )

        return PolicyOutcome(
            DecisionOutcome.NEEDS_APPROVAL,
            _explain(f"confidence below threshold {threshold:.2f}", assessment, mode.value),
            mode,
        )

    def _llm_decision(self, action, assessment, context) -> PolicyOutcome:
        mode = UserOverrideMode.LLM_DECISION

        if assessment.risk_level == RiskLevel.HIGH:
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain("high-risk actions always require approval, model not consulted", assessment, mode.value),
                mode,
            )

        try:
            result = self._ask_llm(action, assessment, context)
        except PolicyEvaluationError as e:
            logger.warning(
                "LLM decision failed, failing closed",
                extra={"props": {"trace_id": context.trace_id, "action_id": action.action_id, "error": str(e)}},
            )
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain(f"LLM decision unavailable ({e}), approval required", assessment, mode.value),
                mode,
            )

        llm_reason = result.reason.strip() or "no reason given"
        if result.requires_approval:
            return PolicyOutcome(
                DecisionOutcome.NEEDS_APPROVAL,
                _explain(f"LLM requested approval: {llm_reason}", assessment, mode.value),
                mode,
            )
        return PolicyOutcome(
            DecisionOutcome.APPROVED,
            _explain(f"LLM cleared action: {llm_reason}", assessment, mode.value),
            mode,
        )

    def _ask_llm(self, action, assessment, context) -> LLMDecisionResult:
        if self.llm_client is None:
            raise PolicyEvaluationError("no LLM decision client configured")

        future = self._executor.submit(self.llm_client.decide, action, assessment, context)
        try:
            result = future.result(timeout=self.llm_timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise PolicyEvaluationError(f"timed out after {self.llm_timeout_seconds:g}s") from e
        except PolicyEvaluationError:
            raise
        except Exception as e:
            raise PolicyEvaluationError(f"{type(e).__name__}: {e}") from e

        if not isinstance(result, LLMDecisionResult) or not isinstance(result.requires_approval, bool):
            raise PolicyEvaluationError(f"unexpected LLM decision payload: {result!r}")
        return result


def _explain(rule: str, assessment: Assessment, mode: str) -> str:
    return (
        f"{rule} (risk={assessment.risk_level.value}, "
        f"confidence={assessment.confidence:.2f}, policy={mode})"
    )
