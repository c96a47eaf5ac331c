# emma/utils/override_utils.py
import json
from typing import Any, Dict, List, Optional, Tuple

from emma.utils.json_utils import json_serializer

MAX_ENTRIES = 50
MAX_KEY_LENGTH = 100
MAX_VALUE_LENGTH = 1000

PROMPT_MAX_ENTRIES = 20
PROMPT_MAX_VALUE_LENGTH = 100


def validate_user_overrides(user_overrides: Optional[Dict[str, Any]]) -> Tuple[bool, List[str]]:
    """
    Size and shape checks for user override preferences.
    Returns (is_valid, issues).
    """
    if user_overrides is None:
        return False, ["User overrides cannot be null"]

    issues: List[str] = []

    if len(user_overrides) > MAX_ENTRIES:
        issues.append(f"Too many override entries: {len(user_overrides)} (max {MAX_ENTRIES})")

    for key, value in user_overrides.items():
        if not isinstance(key, str) or not key.strip():
            issues.append("Override keys cannot be null or empty")
            continue
        if len(key) > MAX_KEY_LENGTH:
            issues.append(f"Override key too long: {key[:20]}... (max {MAX_KEY_LENGTH} chars)")
        if value is not None and len(str(value)) > MAX_VALUE_LENGTH:
            issues.append(f"Override value too long for key '{key}' (max {MAX_VALUE_LENGTH} chars)")

    return not issues, issues


def serialize_for_llm_prompt(user_overrides: Optional[Dict[str, Any]], max_length: int = 4096) -> str:
    if not user_overrides:
        return "No user overrides specified."

    lines = ["User Override Preferences:"]
    for key, value in list(user_overrides.items())[:PROMPT_MAX_ENTRIES]:
        text = "null" if value is None else str(value)
        if len(text) > PROMPT_MAX_VALUE_LENGTH:
            text = text[:PROMPT_MAX_VALUE_LENGTH - 3] + "..."
        lines.append(f"- {key}: {text}")

    if len(user_overrides) > PROMPT_MAX_ENTRIES:
        lines.append(f"... and {len(user_overrides) - PROMPT_MAX_ENTRIES} more preferences")

    result = "\n".join(lines)
    if len(result) > max_length:
        return result[:max_length - 3] + "..."
    return result


def serialize_for_audit_log(user_overrides: Optional[Dict[str, Any]], max_length: int = 1024) -> str:
    if not user_overrides:
        return "{}"

    text = json.dumps(user_overrides, default=json_serializer, separators=(",", ":"))
    if len(text) > max_length:
        return text[:max_length - 3] + "..."
    return text
