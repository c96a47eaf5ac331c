from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class RecentAction:
    key: str
    action_id: str
    seen_at: datetime


class RecentActionStore(ABC):
    """
    Shared lookback over recently validated actions.

    claim() must be atomic per key: two concurrent claims for the same key
    inside the window cannot both return None.
    """

    @abstractmethod
    def claim(self, key: str, action_id: str, window: timedelta) -> Optional[RecentAction]:
        """
        Return the earlier action when one was seen within `window`,
        otherwise record `action_id` under `key` and return None.
        """
        ...
