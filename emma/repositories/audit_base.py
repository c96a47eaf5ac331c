from abc import ABC, abstractmethod
from typing import List, Optional


class AuditRepository(ABC):
    """Append-only audit sink keyed by trace id."""

    @abstractmethod
    def append_event(
        self,
        trace_id: str,
        event_type: str,
        actor: str,
        payload: dict,
        tenant_id: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def list_events(self, trace_id: str) -> List[dict]:
        ...

    @abstractmethod
    def list_events_for_action(self, action_id: str) -> List[dict]:
        ...
