from typing import List, Optional

from emma.db.supabase_client import get_supabase
from emma.repositories.audit_base import AuditRepository


class SupabaseAuditRepository(AuditRepository):
    """
    Supabase-backed Audit Repository
    - audit_events table is append-only
    - read back by trace id for the audit timeline
    """

    TABLE = "audit_events"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    # -------------------------
    # Write
    # -------------------------
    def append_event(
        self,
        trace_id: str,
        event_type: str,
        actor: str,
        payload: dict,
        tenant_id: Optional[str] = None,
    ) -> None:
        self.client.table(self.TABLE).insert(
            {
                "trace_id": trace_id,
                "tenant_id": tenant_id,
                "event_type": event_type,
                "actor": actor,
                "payload": payload,
            }
        ).execute()

    # -------------------------
    # Read
    # -------------------------
    def list_events(self, trace_id: str) -> List[dict]:
        res = (
            self.client
            .table(self.TABLE)
            .select("*")
            .eq("trace_id", trace_id)
            .order("created_at", desc=False)
            .execute()
        )
        return res.data or []

    def list_events_for_action(self, action_id: str) -> List[dict]:
        res = (
            self.client
            .table(self.TABLE)
            .select("*")
            .eq("payload->>action_id", action_id)
            .order("created_at", desc=False)
            .execute()
        )
        return res.data or []
