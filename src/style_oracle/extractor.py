"""Recovers style results from captured engine output.

Engine output is free-form: diagnostics, console prefixes and the payload
lines of other queries may surround the line we want, and the engine may exit
before a payload is fully written. Results are located by the payload tag and
correlated by query id, never by position.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator

from style_oracle.errors import DecodeFailureError, NoResultFoundError, StyleEngineError
from style_oracle.model.query import StyleResult
from style_oracle.model.wire import BATCH_END_TAG, RESULT_TAG, decode_result

logger = logging.getLogger(__name__)

RAW_EXCERPT_CHARS = 500
PAYLOAD_EXCERPT_CHARS = 200

# The encoder writes "id" first, so a truncated payload usually still names its query.
_ID_PREFIX = re.compile(r'^\s*\{\s*"id"\s*:\s*"((?:[^"\\]|\\.)*)"')


def excerpt(text: str, limit: int) -> str:
    """Return at most *limit* characters of *text*, marking any cut."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [{len(text) - limit} more characters]"


def iter_payloads(text: str) -> Iterator[str]:
    """Yield the text following the payload tag on each tagged line."""
    for line in text.splitlines():
        _, tag, payload = line.partition(RESULT_TAG)
        if tag:
            yield payload


def salvage_id(payload: str) -> str | None:
    """Best-effort id of a payload that failed to decode."""
    match = _ID_PREFIX.match(payload)
    return match.group(1) if match else None


def batch_completed(text: str, batch_id: str) -> bool:
    """Whether the end-of-batch marker for *batch_id* appears in *text*."""
    marker = BATCH_END_TAG + batch_id
    return any(line.strip().endswith(marker) for line in text.splitlines())


def _decode_failure(payload: str, reason: str, cause: Exception | None = None) -> DecodeFailureError:
    snippet = excerpt(payload.strip(), PAYLOAD_EXCERPT_CHARS)
    return DecodeFailureError(
        f"Could not decode result payload ({reason}). Payload: {snippet!r}",
        reason=reason,
        payload_excerpt=snippet,
        cause=cause,
    )


def _no_result(message: str, text: str) -> NoResultFoundError:
    snippet = excerpt(text, RAW_EXCERPT_CHARS)
    return NoResultFoundError(f"{message}. Output began: {snippet!r}", raw_excerpt=snippet)


def extract_result(text: str, query_id: str) -> StyleResult:
    """Find and decode the result for *query_id* in captured output.

    Raises:
        NoResultFoundError: no tagged line for this query is present.
        DecodeFailureError: a tagged line is present but its payload does
            not decode (empty, truncated or malformed).
    """
    failure: DecodeFailureError | None = None
    seen = 0

    for payload in iter_payloads(text):
        seen += 1
        try:
            result = decode_result(payload)
        except ValueError as exc:
            salvaged = salvage_id(payload)
            if salvaged is not None and salvaged != query_id:
                continue
            if failure is None:
                failure = _decode_failure(payload, str(exc), exc)
            continue
        if result.id == query_id:
            return result
        logger.debug("Ignoring payload for query %s while extracting %s", result.id, query_id)

    if failure is not None:
        raise failure
    if seen == 0:
        raise _no_result("No result payload found in engine output", text)
    raise _no_result(f"Engine output carried {seen} payload(s) but none for query {query_id}", text)


def extract_batch(text: str, query_ids: Iterable[str]) -> dict[str, StyleResult | StyleEngineError]:
    """Demultiplex a batch's output into one outcome per query id.

    A missing or undecodable payload degrades only its own query. Payloads
    whose id cannot be recovered are logged and otherwise ignored.
    """
    wanted = list(query_ids)
    pending = set(wanted)
    outcomes: dict[str, StyleResult | StyleEngineError] = {}
    unattributed = 0

    for payload in iter_payloads(text):
        try:
            result = decode_result(payload)
        except ValueError as exc:
            salvaged = salvage_id(payload)
            if salvaged in pending and salvaged not in outcomes:
                outcomes[salvaged] = _decode_failure(payload, str(exc), exc)
            else:
                unattributed += 1
                logger.warning("Undecodable payload with unknown id: %s", excerpt(payload, 80))
            continue
        if result.id not in pending:
            logger.debug("Ignoring payload for foreign query %s", result.id)
            continue
        # First well-formed payload wins over an earlier decode failure.
        if not isinstance(outcomes.get(result.id), StyleResult):
            outcomes[result.id] = result

    for query_id in wanted:
        if query_id not in outcomes:
            message = f"No result payload found for query {query_id} in batch output"
            if unattributed:
                message += f" ({unattributed} undecodable payload(s) could not be attributed)"
            outcomes[query_id] = _no_result(message, text)

    return {query_id: outcomes[query_id] for query_id in wanted}
