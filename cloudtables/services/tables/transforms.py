"""Value transforms applied to column values after extraction."""

import json
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import unquote


def ensure_string_array(value: Any) -> list[str]:
    """A JSON-encoded list, a comma separated string or a scalar becomes a list of strings."""
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            decoded = json.loads(text)
            if isinstance(decoded, list):
                return [str(v) for v in decoded]
        return [part.strip() for part in text.split(",") if part.strip()]
    return [str(value)]


def unix_ms_to_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def unix_to_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def arn_to_akas(value: Any) -> list[str]:
    return [str(value)]


def unescape_url(value: Any) -> str:
    return unquote(str(value))


def unmarshal_json(value: Any) -> Any:
    """Decode JSON carried as a string (policy documents, CloudTrail events)."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        return json.loads(text)
    return value


def trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return [value]


def policy_to_canonical(value: Any) -> Any:
    """
    Normalise an IAM policy document so equal policies compare equal:
    single-valued Action/Resource/Principal lists become lists, statements
    keep their order and list members are sorted.
    """
    policy = unmarshal_json(unescape_url(value) if isinstance(value, str) and "%" in value else value)
    if not isinstance(policy, dict):
        return policy

    canonical = dict(policy)
    statements = []
    for statement in _as_list(policy.get("Statement", [])):
        if not isinstance(statement, dict):
            statements.append(statement)
            continue
        normalized = dict(statement)
        for key in ("Action", "NotAction", "Resource", "NotResource"):
            if key in normalized:
                normalized[key] = sorted(str(v) for v in _as_list(normalized[key]))
        for key in ("Principal", "NotPrincipal"):
            principal = normalized.get(key)
            if isinstance(principal, dict):
                normalized[key] = {
                    k: sorted(str(v) for v in _as_list(v)) for k, v in sorted(principal.items())
                }
        statements.append(normalized)
    canonical["Statement"] = statements
    return canonical


def tags_to_map(key_field: str = "Key", value_field: str = "Value") -> Callable[[Any], dict[str, Any]]:
    """[{"Key": k, "Value": v}, ...] -> {k: v}"""

    def convert(value: Any) -> dict[str, Any]:
        if isinstance(value, dict):
            return value
        return {t[key_field]: t.get(value_field) for t in value or [] if key_field in t}

    return convert

