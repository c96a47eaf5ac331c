from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import yaml

from emma.schemas.validation import RiskLevel, UserOverrideMode

BASE_DIR = Path(__file__).resolve().parents[1]
POLICY_DIR = BASE_DIR / "policies"

DEFAULT_CONFIDENCE_THRESHOLD = 0.8


@dataclass(frozen=True)
class ParameterEscalation:
    field: str
    operator: str
    value: Any
    level: RiskLevel


@dataclass(frozen=True)
class RiskTable:
    default_level: RiskLevel = RiskLevel.MEDIUM
    action_types: Dict[str, RiskLevel] = field(default_factory=dict)  # keys lowercased
    substrings: Tuple[Tuple[str, RiskLevel], ...] = ()
    parameter_escalations: Tuple[ParameterEscalation, ...] = ()


@dataclass(frozen=True)
class ValidationPolicy:
    """Typed view over the validation policy YAML."""

    policy_id: str
    version: str
    default_mode: UserOverrideMode = UserOverrideMode.RISK_BASED
    tenant_modes: Dict[str, UserOverrideMode] = field(default_factory=dict)
    confidence_thresholds: Dict[RiskLevel, float] = field(default_factory=dict)
    duplicate_window_minutes: float = 60.0
    approval_timeout_minutes: int = 1440
    always_require_approval: FrozenSet[str] = frozenset()  # lowercased
    risk_table: RiskTable = field(default_factory=RiskTable)
    source_file: Optional[str] = None

    def resolve_mode(self, tenant_id: str, requested: Optional[UserOverrideMode] = None) -> UserOverrideMode:
        if requested is not None:
            return requested
        return self.tenant_modes.get(tenant_id, self.default_mode)

    def threshold_for(self, level: RiskLevel) -> float:
        return self.confidence_thresholds.get(level, DEFAULT_CONFIDENCE_THRESHOLD)


class PolicyLoader:
    """
    Load the validation policy YAML from the policies directory
    (or an explicit path).
    """

    @staticmethod
    def load(filename: str = "action_validation_policy_v1.yaml") -> ValidationPolicy:
        policy_path = Path(filename)
        if not policy_path.is_absolute():
            policy_path = POLICY_DIR / filename

        if not policy_path.exists():
            raise FileNotFoundError(f"Policy file not found: {filename}")

        with open(policy_path, "r") as f:
            raw = yaml.safe_load(f) or {}

        return PolicyLoader.from_dict(raw, source_file=policy_path.name)

    @staticmethod
    def from_dict(raw: Dict[str, Any], source_file: Optional[str] = None) -> ValidationPolicy:
        modes = raw.get("override_modes", {}) or {}
        default_mode = UserOverrideMode(modes.get("default", UserOverrideMode.RISK_BASED.value))
        tenant_modes = {
            str(tenant): UserOverrideMode(mode)
            for tenant, mode in (modes.get("tenants") or {}).items()
        }

        thresholds = {
            RiskLevel.parse(level): float(value)
            for level, value in (raw.get("confidence_thresholds") or {}).items()
        }

        relevance = raw.get("relevance", {}) or {}
        approval = raw.get("approval", {}) or {}

        return ValidationPolicy(
            policy_id=str(raw.get("policy_id", "UNKNOWN")),
            version=str(raw.get("version", "0")),
            default_mode=default_mode,
            tenant_modes=tenant_modes,
            confidence_thresholds=thresholds,
            duplicate_window_minutes=float(relevance.get("duplicate_window_minutes", 60)),
            approval_timeout_minutes=int(approval.get("timeout_minutes", 1440)),
            always_require_approval=_lowered(approval.get("always_require_approval")),
            risk_table=_build_risk_table(raw.get("risk_table", {}) or {}),
            source_file=source_file,
        )


def _lowered(values: Optional[List[str]]) -> FrozenSet[str]:
    return frozenset(str(v).strip().lower() for v in (values or []))


def _build_risk_table(raw: Dict[str, Any]) -> RiskTable:
    action_types = {
        str(tag).strip().lower(): RiskLevel.parse(level)
        for tag, level in (raw.get("action_types") or {}).items()
    }

    substrings: List[Tuple[str, RiskLevel]] = []
    for level, patterns in (raw.get("substrings") or {}).items():
        risk = RiskLevel.parse(level)
        for pattern in patterns or []:
            substrings.append((str(pattern).strip().lower(), risk))

    escalations = tuple(
        ParameterEscalation(
            field=e["field"],
            operator=e["operator"],
            value=e["value"],
            level=RiskLevel.parse(e.get("level", "High")),
        )
        for e in (raw.get("parameter_escalations") or [])
    )

    return RiskTable(
        default_level=RiskLevel.parse(raw.get("default_level", "Medium")),
        action_types=action_types,
        substrings=tuple(substrings),
        parameter_escalations=escalations,
    )
