from typing import Dict, List, Optional

DECISION_EVENT_TYPES = ("ACTION_APPROVED", "ACTION_NEEDS_APPROVAL", "ACTION_REJECTED")


class DecisionStatusService:
    """
    Derive an action's status from its audit events.
    No state stored. Fully deterministic.
    """

    @staticmethod
    def derive(audit_events: List[Dict]) -> Dict:
        """
        Returns:
        {
          status: NO_DECISION | CLEARED | PENDING_APPROVAL | REJECTED | EXPIRED,
          decided_at: Optional[str],
          decided_by: Optional[str],
          reason: Optional[str],
          approval_request_id: Optional[str]
        }
        """

        status = "NO_DECISION"
        decided_at = None
        decided_by = None
        reason = None
        approval_request_id = None

        for ev in audit_events:
            et = ev["event_type"]
            payload = ev.get("payload") or {}

            if et == "ACTION_APPROVED":
                status = "CLEARED"
                decided_at = payload.get("decided_at") or ev.get("created_at")
                decided_by = ev.get("actor")
                reason = payload.get("reason")

            elif et == "ACTION_NEEDS_APPROVAL":
                status = "PENDING_APPROVAL"
                approval_request_id = payload.get("approval_request_id")
                reason = payload.get("reason")

            elif et == "ACTION_REJECTED":
                status = "REJECTED"
                decided_at = payload.get("decided_at") or ev.get("created_at")
                decided_by = ev.get("actor")
                reason = payload.get("reason")

            elif et in ("APPROVAL_GRANTED", "APPROVAL_MODIFIED"):
                status = "CLEARED"
                decided_at = ev.get("created_at")
                decided_by = payload.get("actor")
                reason = payload.get("reason")

            elif et == "APPROVAL_REJECTED":
                status = "REJECTED"
                decided_at = ev.get("created_at")
                decided_by = payload.get("actor")
                reason = payload.get("reason")

            elif et == "APPROVAL_EXPIRED":
                status = "EXPIRED"
                decided_at = ev.get("created_at")

        return {
            "status": status,
            "decided_at": decided_at,
            "decided_by": decided_by,
            "reason": reason,
            "approval_request_id": approval_request_id,
        }

    @staticmethod
    def latest_decision(audit_events: List[Dict]) -> Optional[Dict]:
        """Last pipeline decision event (ACTION_APPROVED / NEEDS_APPROVAL / REJECTED), or None."""
        latest = None
        for ev in audit_events:
            if ev["event_type"] in DECISION_EVENT_TYPES:
                latest = ev
        return latest
