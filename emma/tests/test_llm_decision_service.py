from types import SimpleNamespace

import pytest

from emma.core.exceptions import PolicyEvaluationError
from emma.schemas.action import CandidateAction
from emma.schemas.validation import DecisionOutcome, RiskLevel, ValidationContext
from emma.services.assessors import Assessment
from emma.services.llm_decision_service import OpenAIDecisionClient


class ScriptedCompletions:
    def __init__(self, content):
        self.content = content
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_client(content):
    completions = ScriptedCompletions(content)
    openai = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    # unknown model name keeps token counting offline
    return OpenAIDecisionClient(client=openai, model_name="test-model"), completions


ACTION = CandidateAction(action_type="SendFollowUpEmail", description="Check in after showing")
ASSESSMENT = Assessment(risk_level=RiskLevel.MEDIUM, risk_reason="listed as Medium", confidence=0.72)
CONTEXT = ValidationContext(
    tenant_id="org-001",
    agent_id="nba-agent",
    user_overrides={"tone": "formal", "contact_hours": "9-17"},
)


def test_decide_parses_model_answer_and_sends_prompt():
    client, completions = make_client('{"requiresApproval": false, "reason": "routine follow-up"}')

    result = client.decide(ACTION, ASSESSMENT, CONTEXT)

    assert result.requires_approval is False
    assert result.reason == "routine follow-up"

    [request] = completions.requests
    assert request["model"] == "test-model"
    assert request["response_format"] == {"type": "json_object"}
    prompt = request["messages"][1]["content"]
    assert "SendFollowUpEmail" in prompt
    assert "Confidence: 0.72" in prompt
    assert "- tone: formal" in prompt


def test_parse_accepts_fenced_json():
    result = OpenAIDecisionClient.parse('```json\n{"requiresApproval": true, "reason": "new lead"}\n```')
    assert result.requires_approval is True
    assert result.reason == "new lead"


def test_parse_fills_missing_reason():
    assert OpenAIDecisionClient.parse('{"requiresApproval": true}').reason == "LLM recommendation"


@pytest.mark.parametrize("content", [
    "",
    "I think it is fine",
    '{"reason": "missing flag"}',
    '{"requiresApproval": "yes"}',
    "[true]",
])
def test_parse_rejects_malformed_answers(content):
    with pytest.raises(PolicyEvaluationError):
        OpenAIDecisionClient.parse(content)


def test_malformed_answer_fails_closed_in_pipeline(make_orchestrator, make_context):
    client, _ = make_client("sure, go ahead")
    orchestrator = make_orchestrator(llm_client=client)

    decision = orchestrator.validate_action(ACTION.model_copy(deep=True), make_context("LLMDecision"))

    assert decision.outcome == DecisionOutcome.NEEDS_APPROVAL
    assert "Failed to parse LLM response" in decision.reason
