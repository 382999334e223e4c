"""Tests for result extraction from captured engine output."""

import pytest

from style_oracle.errors import DecodeFailureError, NoResultFoundError
from style_oracle.extractor import (
    batch_completed,
    excerpt,
    extract_batch,
    extract_result,
    salvage_id,
)
from style_oracle.model.query import StyleResult
from style_oracle.model.wire import BATCH_END_TAG, RESULT_TAG, encode_result


def _line(result: StyleResult) -> str:
    return RESULT_TAG + encode_result(result)


class TestExtractResult:
    def test_finds_payload_among_noise(self):
        text = "\n".join([
            "[INFO] starting compositor",
            "console.log: " + _line(StyleResult.value("q1", "rgb(255, 0, 0)")),
            "WARN: something unrelated",
        ])
        assert extract_result(text, "q1").computed_value == "rgb(255, 0, 0)"

    def test_is_idempotent(self):
        text = _line(StyleResult.value("q1", "4px"))
        assert extract_result(text, "q1") == extract_result(text, "q1")

    def test_no_tag_raises_no_result(self):
        with pytest.raises(NoResultFoundError) as info:
            extract_result("engine said nothing useful\n", "q1")
        assert "engine said nothing useful" in info.value.raw_excerpt

    def test_empty_output(self):
        with pytest.raises(NoResultFoundError):
            extract_result("", "q1")

    def test_empty_payload_is_decode_failure(self):
        with pytest.raises(DecodeFailureError) as info:
            extract_result(RESULT_TAG + "\n", "q1")
        assert info.value.reason == "empty payload"

    def test_truncated_payload_is_decode_failure(self):
        payload = encode_result(StyleResult.value("q1", "rgb(0, 0, 0)"))
        with pytest.raises(DecodeFailureError) as info:
            extract_result(RESULT_TAG + payload[:20], "q1")
        assert "invalid JSON" in info.value.reason
        assert info.value.payload_excerpt == payload[:20]

    def test_interleaved_ids_are_correlated(self):
        text = "\n".join([
            _line(StyleResult.value("other", "1px")),
            _line(StyleResult.value("q1", "2px")),
            _line(StyleResult.value("third", "3px")),
        ])
        assert extract_result(text, "q1").computed_value == "2px"
        assert extract_result(text, "third").computed_value == "3px"

    def test_only_foreign_payloads(self):
        with pytest.raises(NoResultFoundError, match="none for query q1"):
            extract_result(_line(StyleResult.value("other", "1px")), "q1")

    def test_foreign_truncated_payload_is_skipped(self):
        text = "\n".join([
            RESULT_TAG + '{"id":"other","succ',
            _line(StyleResult.value("q1", "2px")),
        ])
        assert extract_result(text, "q1").computed_value == "2px"

    def test_first_matching_payload_wins(self):
        text = "\n".join([
            _line(StyleResult.value("q1", "first")),
            _line(StyleResult.value("q1", "second")),
        ])
        assert extract_result(text, "q1").computed_value == "first"

    def test_failed_result_is_returned_not_raised(self):
        result = extract_result(_line(StyleResult.not_matched("q1", ".nope")), "q1")
        assert result.success is False
        assert result.element_not_matched is True

    def test_windows_line_endings(self):
        text = _line(StyleResult.value("q1", "2px")) + "\r\n"
        assert extract_result(text, "q1").computed_value == "2px"


class TestExtractBatch:
    def test_outcomes_in_requested_order(self):
        text = "\n".join([
            _line(StyleResult.value("b", "2")),
            _line(StyleResult.value("a", "1")),
        ])
        outcomes = extract_batch(text, ["a", "b"])
        assert list(outcomes) == ["a", "b"]
        assert outcomes["a"].computed_value == "1"
        assert outcomes["b"].computed_value == "2"

    def test_missing_payload_degrades_only_that_query(self):
        text = _line(StyleResult.value("a", "1"))
        outcomes = extract_batch(text, ["a", "b"])
        assert isinstance(outcomes["a"], StyleResult)
        assert isinstance(outcomes["b"], NoResultFoundError)

    def test_truncated_payload_attributed_by_id(self):
        text = "\n".join([
            _line(StyleResult.value("a", "1")),
            RESULT_TAG + '{"id":"b","success":tr',
        ])
        outcomes = extract_batch(text, ["a", "b"])
        assert isinstance(outcomes["a"], StyleResult)
        assert isinstance(outcomes["b"], DecodeFailureError)

    def test_unattributable_payload_mentioned(self):
        outcomes = extract_batch(RESULT_TAG + "{{{", ["a"])
        assert isinstance(outcomes["a"], NoResultFoundError)
        assert "could not be attributed" in str(outcomes["a"])

    def test_foreign_ids_ignored(self):
        outcomes = extract_batch(_line(StyleResult.value("zzz", "1")), ["a"])
        assert isinstance(outcomes["a"], NoResultFoundError)


class TestHelpers:
    def test_excerpt_marks_cut(self):
        assert excerpt("abcdef", 10) == "abcdef"
        assert excerpt("abcdef", 2) == "ab... [4 more characters]"

    def test_salvage_id(self):
        assert salvage_id('{"id":"q1","succ') == "q1"
        assert salvage_id(' { "id" : "q2"') == "q2"
        assert salvage_id('{"success":true') is None
        assert salvage_id("") is None

    def test_batch_completed(self):
        text = f"noise\n{BATCH_END_TAG}b1\n"
        assert batch_completed(text, "b1") is True
        assert batch_completed(text, "b2") is False
