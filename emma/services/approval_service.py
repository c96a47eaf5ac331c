from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from emma.core.exceptions import ApprovalRequestError
from emma.repositories.approval_base import ApprovalRepository
from emma.schemas.action import ActionPriority, CandidateAction
from emma.schemas.approval import (
    ApprovalRequest,
    ApprovalResponse,
    ApprovalResponseDecision,
    ApprovalStatus,
)
from emma.schemas.validation import DecisionOutcome, ValidationContext, ValidationDecision
from emma.services.audit_service import AuditService

logger = logging.getLogger(__name__)

RESPONSE_EVENT_TYPES = {
    ApprovalResponseDecision.APPROVE: "APPROVAL_GRANTED",
    ApprovalResponseDecision.REJECT: "APPROVAL_REJECTED",
    ApprovalResponseDecision.MODIFY: "APPROVAL_MODIFIED",
    ApprovalResponseDecision.DEFER: "APPROVAL_DEFERRED",
}


class ApprovalService:
    """
    Human-in-the-loop side of NeedsApproval decisions:
    - open a request per decision
    - Approve / Reject / Modify / Defer
    - bulk-apply to similar pending requests
    - expire stale requests

    The decision itself is never re-evaluated here; every transition is
    recorded as an audit event.
    """

    def __init__(
        self,
        repo: ApprovalRepository,
        audit: AuditService,
        timeout_minutes: int = 1440,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repo = repo
        self.audit = audit
        self.timeout = timedelta(minutes=timeout_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()

    # -------------------------------------------------
    # Create / read
    # -------------------------------------------------
    def open_request(
        self,
        action: CandidateAction,
        decision: ValidationDecision,
        context: ValidationContext,
    ) -> ApprovalRequest:
        if decision.outcome != DecisionOutcome.NEEDS_APPROVAL or not decision.approval_request_id:
            raise ApprovalRequestError(
                f"Decision for action {decision.action_id} does not need approval",
                code="invalid",
            )

        now = self._clock()
        request = ApprovalRequest(
            request_id=decision.approval_request_id,
            action=action.model_copy(deep=True),
            tenant_id=context.tenant_id,
            trace_id=context.trace_id,
            reason=decision.reason,
            risk_level=decision.risk_level.value,
            confidence_score=decision.confidence_score,
            user_id=context.user_id,
            requested_at=now,
            expires_at=now + self.timeout,
            user_overrides=dict(context.user_overrides),
        )
        self.repo.save(request)

        logger.info(
            "Approval request opened",
            extra={"props": {
                "trace_id": context.trace_id,
                "request_id": request.request_id,
                "action_id": action.action_id,
                "expires_at": request.expires_at.isoformat(),
            }},
        )
        return request

    def get(self, request_id: str) -> ApprovalRequest:
        request = self.repo.get(request_id)
        if request is None:
            raise ApprovalRequestError(
                f"Approval request not found: {request_id}",
                code="not_found",
                request_id=request_id,
            )
        return request

    def list_pending(self, tenant_id: str, include_expired: bool = False) -> List[ApprovalRequest]:
        now = self._clock()
        return [
            r for r in self.repo.list_by_tenant(tenant_id)
            if r.is_open and (include_expired or not r.is_expired(now))
        ]

    # -------------------------------------------------
    # Respond
    # -------------------------------------------------
    def respond(self, request_id: str, response: ApprovalResponse) -> ApprovalRequest:
        with self._lock:
            request = self.get(request_id)
            now = self._clock()

            if not request.is_open:
                raise ApprovalRequestError(
                    f"Approval request {request_id} is already {request.status.value}",
                    code="closed",
                    request_id=request_id,
                )

            if request.is_expired(now):
                self._expire(request, now)
                raise ApprovalRequestError(
                    f"Approval request {request_id} expired at {request.expires_at.isoformat()}",
                    code="expired",
                    request_id=request_id,
                )

            if response.decision == ApprovalResponseDecision.REJECT and not (response.reason or "").strip():
                raise ApprovalRequestError(
                    "Reject action requires a reason",
                    code="invalid",
                    request_id=request_id,
                )

            updated = self._apply(request, response, now)
            self.repo.save(updated)
            self._audit_response(updated, response)

            if response.apply_to_similar and response.decision in (
                ApprovalResponseDecision.APPROVE,
                ApprovalResponseDecision.REJECT,
            ):
                self._apply_to_similar(updated, response, now)

            return updated

    def expire_stale(self) -> int:
        """Close every pending request past its expiry. Returns the count."""
        with self._lock:
            now = self._clock()
            expired = 0
            for request in self.repo.list_open():
                if request.is_expired(now):
                    self._expire(request, now)
                    expired += 1
        if expired:
            logger.info("Expired approval requests", extra={"props": {"count": expired}})
        return expired

    # -------------------------------------------------
    # Internals
    # -------------------------------------------------
    def _apply(self, request: ApprovalRequest, response: ApprovalResponse, now: datetime) -> ApprovalRequest:
        if response.decision == ApprovalResponseDecision.DEFER:
            return request.model_copy(update={
                "expires_at": now + timedelta(minutes=response.defer_minutes),
                "decision_reason": response.reason,
            })

        update = {
            "decided_at": now,
            "decided_by": response.actor,
            "decision_reason": response.reason,
        }
        if response.decision == ApprovalResponseDecision.APPROVE:
            update["status"] = ApprovalStatus.APPROVED
        elif response.decision == ApprovalResponseDecision.REJECT:
            update["status"] = ApprovalStatus.REJECTED
        else:
            update["status"] = ApprovalStatus.MODIFIED
            update["action"] = apply_modifications(request.action, response.modifications)

        return request.model_copy(update=update)

    def _apply_to_similar(self, original: ApprovalRequest, response: ApprovalResponse, now: datetime) -> int:
        similar = [
            r for r in self.list_pending(original.tenant_id)
            if r.request_id != original.request_id and _is_similar(r.action, original.action)
        ]
        for request in similar:
            updated = self._apply(request, response, now)
            self.repo.save(updated)
            self._audit_response(updated, response, bulk_of=original.request_id)

        logger.info(
            "Bulk approval applied",
            extra={"props": {
                "trace_id": original.trace_id,
                "request_id": original.request_id,
                "count": len(similar),
            }},
        )
        return len(similar)

    def _expire(self, request: ApprovalRequest, now: datetime) -> None:
        expired = request.model_copy(update={"status": ApprovalStatus.EXPIRED, "decided_at": now})
        self.repo.save(expired)
        logger.warning(
            "Approval request expired",
            extra={"props": {"trace_id": request.trace_id, "request_id": request.request_id}},
        )
        self.audit.write(
            trace_id=request.trace_id,
            event_type="APPROVAL_EXPIRED",
            payload={
                "action_id": request.action.action_id,
                "request_id": request.request_id,
                "expires_at": request.expires_at,
            },
            tenant_id=request.tenant_id,
        )

    def _audit_response(
        self,
        request: ApprovalRequest,
        response: ApprovalResponse,
        bulk_of: Optional[str] = None,
    ) -> None:
        payload = {
            "action_id": request.action.action_id,
            "action_type": request.action.action_type,
            "request_id": request.request_id,
            "status": request.status,
            "actor": response.actor,
            "reason": response.reason,
            "expires_at": request.expires_at,
        }
        if response.decision == ApprovalResponseDecision.MODIFY:
            payload["modifications"] = response.modifications
        if bulk_of:
            payload["bulk_of"] = bulk_of

        self.audit.write(
            trace_id=request.trace_id,
            event_type=RESPONSE_EVENT_TYPES[response.decision],
            payload=payload,
            actor=response.actor,
            tenant_id=request.tenant_id,
        )


def apply_modifications(action: CandidateAction, modifications: dict) -> CandidateAction:
    """
    Copy of `action` with human edits applied. description and priority are
    content fields; anything else lands in parameters.
    """
    modified = action.model_copy(deep=True)
    for key, value in (modifications or {}).items():
        lowered = key.lower()
        if lowered == "description":
            modified.description = str(value)
        elif lowered == "priority":
            modified.priority = _parse_priority(value, modified.priority)
        else:
            modified.parameters[key] = value
    return modified


def _parse_priority(value, fallback: ActionPriority) -> ActionPriority:
    try:
        return ActionPriority(int(value))
    except (TypeError, ValueError):
        pass
    try:
        return ActionPriority[str(value).strip().upper()]
    except KeyError:
        return fallback


def _is_similar(a: CandidateAction, b: CandidateAction) -> bool:
    return (
        a.normalized_type == b.normalized_type
        and a.target_contact_id is not None
        and a.target_contact_id == b.target_contact_id
    )
