from abc import ABC, abstractmethod
from typing import List, Optional

from emma.schemas.approval import ApprovalRequest


class ApprovalRepository(ABC):

    @abstractmethod
    def save(self, request: ApprovalRequest) -> None:
        """Create or replace a request."""
        ...

    @abstractmethod
    def get(self, request_id: str) -> Optional[ApprovalRequest]:
        ...

    @abstractmethod
    def list_by_tenant(self, tenant_id: str) -> List[ApprovalRequest]:
        ...

    @abstractmethod
    def list_open(self) -> List[ApprovalRequest]:
        """Every pending request, any tenant."""
        ...
