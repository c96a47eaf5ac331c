import threading
from datetime import datetime, timezone
from typing import List, Optional

from emma.repositories.audit_base import AuditRepository
from emma.utils.id_generator import generate_uuid


class MemoryAuditRepository(AuditRepository):

    def __init__(self):
        self._events: List[dict] = []
        self._lock = threading.Lock()

    def append_event(
        self,
        trace_id: str,
        event_type: str,
        actor: str,
        payload: dict,
        tenant_id: Optional[str] = None,
    ) -> None:
        event = {
            "event_id": generate_uuid(),
            "trace_id": trace_id,
            "tenant_id": tenant_id,
            "event_type": event_type,
            "actor": actor,
            "payload": payload,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._events.append(event)

    def list_events(self, trace_id: str) -> List[dict]:
        with self._lock:
            return [e for e in self._events if e["trace_id"] == trace_id]

    def list_events_for_action(self, action_id: str) -> List[dict]:
        with self._lock:
            return [e for e in self._events if e["payload"].get("action_id") == action_id]
