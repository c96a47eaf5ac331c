from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

from emma.repositories.recent_actions_base import RecentActionStore
from emma.schemas.action import CandidateAction
from emma.schemas.validation import RiskLevel, ValidationContext
from emma.services.policy_loader import RiskTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelevanceResult:
    is_relevant: bool
    reason: str
    duplicate_of: Optional[str] = None


@dataclass(frozen=True)
class Assessment:
    """Everything the policy engine needs about one action."""
    risk_level: RiskLevel
    risk_reason: str
    confidence: float
    confidence_note: Optional[str] = None


# ============================================================
# Confidence
# ============================================================

class ConfidenceAssessor:

    @staticmethod
    def clamp(value: Any) -> Tuple[float, Optional[str]]:
        """
        Clamp into [0, 1]. Returns (score, note); note is set only when
        the original value had to be changed.
        """
        try:
            score = float(value)
        except (TypeError, ValueError):
            return 0.0, f"confidence {value!r} is not numeric, clamped to 0.00"

        if math.isnan(score):
            return 0.0, "confidence NaN clamped to 0.00"
        if score < 0.0:
            return 0.0, f"confidence {score:.2f} clamped to 0.00"
        if score > 1.0:
            return 1.0, f"confidence {score:.2f} clamped to 1.00"
        return score, None


# ============================================================
# Risk
# ============================================================

class RiskAssessor:

    def __init__(self, table: RiskTable):
        self.table = table

    def classify(self, action: CandidateAction) -> Tuple[RiskLevel, str]:
        tag = action.normalized_type
        compact = tag.replace(" ", "").replace("-", "").replace("_", "")

        if tag in self.table.action_types:
            level = self.table.action_types[tag]
            reason = f"action type '{action.action_type}' is listed as {level.value}"
        else:
            matched: List[Tuple[str, RiskLevel]] = [
                (pattern, risk) for pattern, risk in self.table.substrings
                if pattern in tag or pattern.replace("_", "") in compact
            ]
            if matched:
                pattern, level = max(matched, key=lambda m: m[1].rank)
                reason = f"action type '{action.action_type}' matches '{pattern}' ({level.value})"
            else:
                level = self.table.default_level
                reason = f"action type '{action.action_type}' is unknown, defaulting to {level.value}"

        for rule in self.table.parameter_escalations:
            actual = action.parameters.get(rule.field)
            if rule.level.rank > level.rank and _safe_compare(actual, rule.operator, rule.value):
                level = rule.level
                reason += f"; escalated to {level.value} by {rule.field} {rule.operator} {rule.value}"

        return level, reason


# ============================================================
# Relevance
# ============================================================

class RelevanceAssessor:
    """
    Stale and duplicate checks. The duplicate lookback and the recording of
    the action are one claim() on the recent-actions store.
    """

    def __init__(
        self,
        store: RecentActionStore,
        window_minutes: float,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.window = timedelta(minutes=window_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check(self, action: CandidateAction, context: ValidationContext) -> RelevanceResult:
        if action.expires_at is not None:
            expires_at = action.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= self._clock():
                return RelevanceResult(
                    is_relevant=False,
                    reason=f"action is stale: expired at {expires_at.isoformat()}",
                )

        contact_id = action.target_contact_id
        if not contact_id:
            return RelevanceResult(is_relevant=True, reason="no contact to check for duplicates")

        key = f"{context.tenant_id}:{contact_id}:{action.normalized_type}"
        earlier = self.store.claim(key, action.action_id, self.window)
        if earlier is not None:
            minutes = self.window.total_seconds() / 60
            logger.info(
                "Duplicate action rejected",
                extra={"props": {
                    "trace_id": context.trace_id,
                    "action_id": action.action_id,
                    "duplicate_of": earlier.action_id,
                }},
            )
            return RelevanceResult(
                is_relevant=False,
                reason=(
                    f"duplicate of action {earlier.action_id}: '{action.action_type}' for contact "
                    f"{contact_id} already pending within {minutes:g} minutes (relevance check)"
                ),
                duplicate_of=earlier.action_id,
            )

        return RelevanceResult(is_relevant=True, reason="no recent duplicate for contact")


# ============================================================
# Helpers
# ============================================================

def _safe_compare(actual: Any, operator: str, expected: Any) -> bool:
    if actual is None:
        return False

    try:
        if operator == ">":
            return actual > expected
        if operator == ">=":
            return actual >= expected
        if operator == "<":
            return actual < expected
        if operator == "<=":
            return actual <= expected
        if operator == "==":
            return actual == expected
        if operator == "!=":
            return actual != expected
        if operator == "in":
            return actual in expected
        if operator == "not_in":
            return actual not in expected
        if operator == "contains":
            return expected in actual
    except TypeError:
        return False

    return False
