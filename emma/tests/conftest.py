from datetime import datetime, timedelta, timezone

import pytest

from emma.repositories.memory_approval_repo import MemoryApprovalRepository
from emma.repositories.memory_audit_repo import MemoryAuditRepository
from emma.repositories.memory_recent_actions import MemoryRecentActionStore
from emma.schemas.validation import ValidationContext
from emma.services.approval_policy import LLMDecisionResult
from emma.services.approval_service import ApprovalService
from emma.services.audit_service import AuditService
from emma.services.policy_loader import PolicyLoader
from emma.services.validation_orchestrator import ActionValidationOrchestrator


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeLLM:
    """Scripted LLM decision client."""

    def __init__(self, requires_approval=False, reason="looks routine", error=None):
        self.requires_approval = requires_approval
        self.reason = reason
        self.error = error
        self.calls = []

    def decide(self, action, assessment, context):
        self.calls.append(action.action_id)
        if self.error is not None:
            raise self.error
        return LLMDecisionResult(requires_approval=self.requires_approval, reason=self.reason)


class FailingAuditRepository(MemoryAuditRepository):
    def append_event(self, *args, **kwargs):
        raise ConnectionError("audit sink unavailable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return PolicyLoader.load()


@pytest.fixture
def audit_repo():
    return MemoryAuditRepository()


@pytest.fixture
def audit(audit_repo):
    return AuditService(audit_repo)


@pytest.fixture
def recent_store(clock):
    return MemoryRecentActionStore(clock=clock)


@pytest.fixture
def approvals(audit, clock, policy):
    return ApprovalService(
        MemoryApprovalRepository(),
        audit,
        timeout_minutes=policy.approval_timeout_minutes,
        clock=clock,
    )


@pytest.fixture
def make_orchestrator(policy, audit, recent_store, approvals, clock):
    def _make(llm_client=None, llm_timeout_seconds=2.0, **overrides):
        kwargs = dict(
            policy=policy,
            audit=audit,
            recent_actions=recent_store,
            approvals=approvals,
            llm_client=llm_client,
            llm_timeout_seconds=llm_timeout_seconds,
            clock=clock,
        )
        kwargs.update(overrides)
        return ActionValidationOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def make_context():
    def _make(mode="RiskBased", **kwargs):
        kwargs.setdefault("tenant_id", "org-001")
        kwargs.setdefault("agent_id", "nba-agent")
        kwargs.setdefault("trace_id", "trace-123")
        return ValidationContext(override_mode=mode, **kwargs)

    return _make
