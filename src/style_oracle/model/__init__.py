"""Query model: value types for style requests and results."""

from style_oracle.model.query import NOT_MATCHED_PREFIX, StyleQuery, StyleResult, new_query_id
from style_oracle.model.wire import (
    BATCH_END_TAG,
    READY_TAG,
    RESULT_TAG,
    decode_result,
    encode_result,
    format_payload_line,
)

__all__ = [
    "StyleQuery",
    "StyleResult",
    "NOT_MATCHED_PREFIX",
    "new_query_id",
    "RESULT_TAG",
    "BATCH_END_TAG",
    "READY_TAG",
    "encode_result",
    "decode_result",
    "format_payload_line",
]
