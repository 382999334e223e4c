"""JSON encoding of results as carried on the payload line."""

from __future__ import annotations

import json
from typing import Any

from style_oracle.model.query import StyleResult

RESULT_TAG = "STYLE_ORACLE_RESULT:"
BATCH_END_TAG = "STYLE_ORACLE_BATCH_END:"
READY_TAG = "STYLE_ORACLE_READY"


def result_to_dict(result: StyleResult) -> dict[str, Any]:
    data: dict[str, Any] = {"id": result.id, "success": result.success}
    if result.computed_value is not None:
        data["computed_value"] = result.computed_value
    if result.computed_styles is not None:
        data["computed_styles"] = dict(result.computed_styles)
    if result.error is not None:
        data["error"] = result.error
    if result.simulated:
        data["simulated"] = True
    return data


def encode_result(result: StyleResult) -> str:
    """Encode a result as the JSON text that follows the payload tag."""
    return json.dumps(result_to_dict(result), separators=(",", ":"))


def format_payload_line(result: StyleResult) -> str:
    return RESULT_TAG + encode_result(result)


def result_from_dict(data: Any) -> StyleResult:
    """Build a result from decoded JSON, validating field types.

    Raises ``ValueError`` naming the first problem found.
    """
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    query_id = data.get("id")
    if not isinstance(query_id, str) or not query_id:
        raise ValueError("missing or non-string 'id'")

    success = data.get("success")
    if not isinstance(success, bool):
        raise ValueError("missing or non-boolean 'success'")

    value = data.get("computed_value")
    if value is not None and not isinstance(value, str):
        raise ValueError("'computed_value' must be a string")

    styles = data.get("computed_styles")
    if styles is not None:
        if not isinstance(styles, dict):
            raise ValueError("'computed_styles' must be an object")
        styles = {str(k): "" if v is None else str(v) for k, v in styles.items()}

    error = data.get("error")
    if error is not None and not isinstance(error, str):
        error = str(error)

    if success and value is None and styles is None:
        raise ValueError("successful result carries neither 'computed_value' nor 'computed_styles'")
    if success and value is not None and styles is not None:
        raise ValueError("successful result carries both 'computed_value' and 'computed_styles'")
    if not success and error is None:
        error = "engine reported failure without a message"

    return StyleResult(
        id=query_id,
        success=success,
        computed_value=value if success else None,
        computed_styles=styles if success else None,
        error=None if success else error,
        simulated=bool(data.get("simulated", False)),
    )


def decode_result(text: str) -> StyleResult:
    """Decode the JSON text that follows the payload tag.

    Surrounding whitespace, including a trailing line terminator, is ignored.
    """
    stripped = text.strip()
    if not stripped:
        raise ValueError("empty payload")
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc
    return result_from_dict(data)
