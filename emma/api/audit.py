# emma/api/audit.py

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path

from emma.dependencies import get_audit_service
from emma.services.audit_service import AuditService

router = APIRouter(tags=["audit"])


def _summarize(event: Dict[str, Any]) -> str:
    payload = event.get("payload") or {}
    et = event.get("event_type", "")

    if et.startswith("ACTION_") and et != "ACTION_INPUT_INVALID":
        return f"{payload.get('action_type')} -> {payload.get('outcome')}: {payload.get('reason')}"
    if et == "ACTION_INPUT_INVALID":
        return f"item {payload.get('index')}: {payload.get('message')}"
    if et.startswith("APPROVAL_"):
        return f"{payload.get('request_id')} {payload.get('status', 'Expired')} by {payload.get('actor') or 'SYSTEM'}"
    return et


@router.get("/{trace_id}")
def audit_timeline(
    trace_id: str = Path(...),
    audit: AuditService = Depends(get_audit_service),
) -> Dict[str, Any]:
    events: List[dict] = audit.list_by_trace(trace_id)
    return {
        "trace_id": trace_id,
        "events": [{**e, "summary": _summarize(e)} for e in events],
    }
