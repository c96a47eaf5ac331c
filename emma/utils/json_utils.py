import json
import re
from typing import Any
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def json_serializer(obj: Any) -> Any:
    """
    default= hook for json.dumps.
    Handles datetime, Decimal, Enum and pydantic models.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if hasattr(obj, '__dict__'):
        return obj.__dict__

    return str(obj)


def to_jsonable(data: Any) -> Any:
    """Round-trip through json so payloads only hold plain types."""
    return json.loads(json.dumps(data, default=json_serializer))


def safe_json_loads(json_str: str, default: Any = None) -> Any:
    """
    Parse a string that came from an LLM or another API.
    Tolerates ```json fences around the body.
    """
    if not json_str:
        return default
    try:
        return json.loads(_FENCE.sub("", json_str.strip()))
    except json.JSONDecodeError:
        return default
