import logging
from typing import Optional

from openai import OpenAI

from emma.core.config import settings
from emma.core.exceptions import PolicyEvaluationError
from emma.schemas.action import CandidateAction
from emma.schemas.validation import ValidationContext
from emma.services.approval_policy import LLMDecisionResult
from emma.services.assessors import Assessment
from emma.utils.json_utils import safe_json_loads
from emma.utils.llm_utils import count_tokens, estimate_cost_usd
from emma.utils.override_utils import serialize_for_llm_prompt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an AI assistant helping determine if a CRM action proposed by another agent requires human approval.
Consider factors like:
- Action sensitivity and potential impact on the contact
- Confidence level of the proposing agent
- Risk of automation errors
- Real-estate industry compliance requirements
- The user's stated override preferences

Respond with JSON only: { "requiresApproval": true/false, "reason": "explanation" }"""


class OpenAIDecisionClient:
    """LLM collaborator for the LLMDecision approval mode."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.model_name = model_name or settings.openai_model
        self.client = client or OpenAI(
            api_key=settings.openai_api_key,
            timeout=timeout_seconds or settings.llm_decision_timeout_seconds,
            max_retries=0,
        )

    def decide(
        self,
        action: CandidateAction,
        assessment: Assessment,
        context: ValidationContext,
    ) -> LLMDecisionResult:
        user_prompt = self._build_user_prompt(action, assessment, context)

        tokens = count_tokens(SYSTEM_PROMPT + user_prompt, self.model_name)
        logger.info(
            "Requesting LLM approval decision",
            extra={"props": {
                "trace_id": context.trace_id,
                "action_id": action.action_id,
                "prompt_tokens": tokens,
                "estimated_cost_usd": round(estimate_cost_usd(tokens, self.model_name), 6),
            }},
        )

        response = self.client.chat.completions.create(
            model=self.model_name,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )
        content = response.choices[0].message.content or ""
        return self.parse(content)

    @staticmethod
    def parse(content: str) -> LLMDecisionResult:
        data = safe_json_loads(content)
        if not isinstance(data, dict) or not isinstance(data.get("requiresApproval"), bool):
            raise PolicyEvaluationError("Failed to parse LLM response")
        return LLMDecisionResult(
            requires_approval=data["requiresApproval"],
            reason=str(data.get("reason") or "LLM recommendation"),
        )

    @staticmethod
    def _build_user_prompt(action: CandidateAction, assessment: Assessment, context: ValidationContext) -> str:
        return f"""
Evaluate if this action requires human approval:

ACTION:
- Type: {action.action_type}
- Description: {action.description}
- Priority: {action.priority.name}
- Proposed by: {action.source_agent or context.agent_id}

ASSESSMENT:
- Risk level: {assessment.risk_level.value} ({assessment.risk_reason})
- Confidence: {assessment.confidence:.2f}

{serialize_for_llm_prompt(context.user_overrides)}

Should this action require human approval before execution?"""
