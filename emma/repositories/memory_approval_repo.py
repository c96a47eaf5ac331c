import threading
from typing import Dict, List, Optional

from emma.repositories.approval_base import ApprovalRepository
from emma.schemas.approval import ApprovalRequest


class MemoryApprovalRepository(ApprovalRepository):

    def __init__(self):
        self._requests: Dict[str, ApprovalRequest] = {}
        self._lock = threading.RLock()

    def save(self, request: ApprovalRequest) -> None:
        with self._lock:
            self._requests[request.request_id] = request

    def get(self, request_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def list_by_tenant(self, tenant_id: str) -> List[ApprovalRequest]:
        with self._lock:
            items = [r for r in self._requests.values() if r.tenant_id == tenant_id]
        return sorted(items, key=lambda r: r.requested_at)

    def list_open(self) -> List[ApprovalRequest]:
        with self._lock:
            items = [r for r in self._requests.values() if r.is_open]
        return sorted(items, key=lambda r: r.requested_at)
