from datetime import datetime, timedelta
from typing import Optional

from emma.db.supabase_client import get_supabase
from emma.repositories.recent_actions_base import RecentAction, RecentActionStore


class SupabaseRecentActionStore(RecentActionStore):
    """
    Recent-actions lookback shared across instances.

    The check-and-record runs inside the `claim_recent_action` database
    function (single transaction, row lock on key). It returns the earlier
    row when one is inside the window, otherwise upserts and returns nothing.
    """

    FUNCTION = "claim_recent_action"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def claim(self, key: str, action_id: str, window: timedelta) -> Optional[RecentAction]:
        res = self.client.rpc(
            self.FUNCTION,
            {
                "p_key": key,
                "p_action_id": action_id,
                "p_window_seconds": int(window.total_seconds()),
            },
        ).execute()

        rows = res.data or []
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return None

        row = rows[0]
        return RecentAction(
            key=row.get("key", key),
            action_id=row["action_id"],
            seen_at=datetime.fromisoformat(str(row["seen_at"]).replace("Z", "+00:00")),
        )
