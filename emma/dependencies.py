# emma/dependencies.py
import logging
from dataclasses import replace
from typing import Optional

from fastapi import FastAPI, Request

from emma.core.config import Settings, settings as default_settings
from emma.repositories.audit_base import AuditRepository
from emma.repositories.memory_approval_repo import MemoryApprovalRepository
from emma.repositories.memory_audit_repo import MemoryAuditRepository
from emma.repositories.memory_recent_actions import MemoryRecentActionStore
from emma.repositories.recent_actions_base import RecentActionStore
from emma.schemas.validation import UserOverrideMode
from emma.services.approval_service import ApprovalService
from emma.services.audit_service import AuditService
from emma.services.execution_guard import ExecutionGuard
from emma.services.policy_loader import PolicyLoader, ValidationPolicy
from emma.services.validation_orchestrator import ActionValidationOrchestrator

logger = logging.getLogger(__name__)


def _build_audit_repo(cfg: Settings) -> AuditRepository:
    if cfg.audit_backend == "supabase":
        from emma.repositories.supabase_audit_repo import SupabaseAuditRepository
        return SupabaseAuditRepository()
    return MemoryAuditRepository()


def _build_recent_actions(cfg: Settings) -> RecentActionStore:
    if cfg.recent_actions_backend == "supabase":
        from emma.repositories.supabase_recent_actions import SupabaseRecentActionStore
        return SupabaseRecentActionStore()
    return MemoryRecentActionStore()


def _build_llm_client(cfg: Settings):
    if not cfg.openai_api_key:
        logger.info("OPENAI_API_KEY not set, LLMDecision mode will fail closed")
        return None
    from emma.services.llm_decision_service import OpenAIDecisionClient
    return OpenAIDecisionClient()


def load_policy(cfg: Settings) -> ValidationPolicy:
    policy = PolicyLoader.load(cfg.validation_policy_file)

    overrides = {}
    if cfg.default_override_mode:
        overrides["default_mode"] = UserOverrideMode(cfg.default_override_mode)
    if cfg.approval_timeout_minutes is not None:
        overrides["approval_timeout_minutes"] = cfg.approval_timeout_minutes
    if overrides:
        policy = replace(policy, **overrides)

    return policy


def init_services(app: FastAPI, cfg: Optional[Settings] = None) -> None:
    """
    Initialize repositories and services on app.state.
    Must be idempotent.
    """
    if getattr(app.state, "orchestrator", None) is not None:
        return

    cfg = cfg or default_settings
    policy = load_policy(cfg)

    try:
        audit_repo = _build_audit_repo(cfg)
    except Exception:
        # audit must always exist
        logger.exception("Audit repository initialization failed, using memory")
        audit_repo = MemoryAuditRepository()

    audit = AuditService(audit_repo)
    approvals = ApprovalService(
        MemoryApprovalRepository(),
        audit,
        timeout_minutes=policy.approval_timeout_minutes,
    )

    app.state.policy = policy
    app.state.audit_service = audit
    app.state.approval_service = approvals
    app.state.execution_guard = ExecutionGuard(approvals, audit)
    app.state.orchestrator = ActionValidationOrchestrator(
        policy=policy,
        audit=audit,
        recent_actions=_build_recent_actions(cfg),
        approvals=approvals,
        llm_client=_build_llm_client(cfg),
        llm_timeout_seconds=cfg.llm_decision_timeout_seconds,
    )

    logger.info(
        "Services initialized",
        extra={"props": {
            "policy_id": policy.policy_id,
            "policy_version": policy.version,
            "audit_backend": cfg.audit_backend,
            "recent_actions_backend": cfg.recent_actions_backend,
        }},
    )


# -------------------------
# FastAPI dependencies
# -------------------------
def get_orchestrator(request: Request) -> ActionValidationOrchestrator:
    return request.app.state.orchestrator


def get_audit_service(request: Request) -> AuditService:
    return request.app.state.audit_service


def get_approval_service(request: Request) -> ApprovalService:
    return request.app.state.approval_service
