"""Tests for document assembly."""

import json
import re

import pytest

from helpers import make_query
from style_oracle.assembler import (
    DAEMON_ELEMENT_ID,
    QUERIES_ELEMENT_ID,
    SETTINGS_ELEMENT_ID,
    assemble_batch_document,
    assemble_document,
    assemble_host_page,
    batch_id_for,
)
from style_oracle.model.wire import BATCH_END_TAG, READY_TAG, RESULT_TAG


def _block(document: str, element_id: str):
    match = re.search(rf'<script type="application/json" id="{element_id}">(.*?)</script>', document)
    assert match, f"no {element_id} block"
    return json.loads(match.group(1))


class TestAssembleDocument:
    def test_contains_markup_and_stylesheet(self):
        q = make_query()
        doc = assemble_document(q)
        assert q.html in doc
        assert "<style>\n.highlight { color: red; margin: 4px 8px; }\n</style>" in doc
        assert doc.startswith("<!DOCTYPE html>")

    def test_stylesheets_keep_submission_order(self):
        q = make_query(css=("p { color: blue }", "p { color: green }"))
        doc = assemble_document(q)
        assert doc.index("color: blue") < doc.index("color: green")

    def test_embeds_query(self):
        q = make_query(".note", "display", pseudo_element="::after")
        queries = _block(assemble_document(q), QUERIES_ELEMENT_ID)
        assert queries == [{
            "id": q.id, "selector": ".note", "property": "display", "pseudo_element": "::after",
        }]

    def test_settings_carry_tags_and_close_delay(self):
        q = make_query()
        settings = _block(assemble_document(q, close_delay_ms=750), SETTINGS_ELEMENT_ID)
        assert settings["result_tag"] == RESULT_TAG
        assert settings["end_tag"] == BATCH_END_TAG
        assert settings["close_delay_ms"] == 750
        assert settings["exit_after_report"] is True
        assert settings["batch_id"] == batch_id_for([q])

    def test_close_is_scheduled_after_reporting(self):
        doc = assemble_document(make_query())
        assert doc.index("console.log(settings.end_tag") < doc.index("window.close()")
        assert "addEventListener('load'" in doc

    def test_is_deterministic(self):
        q = make_query()
        assert assemble_document(q) == assemble_document(q)

    def test_hostile_selector_cannot_close_script(self):
        q = make_query('div[title="</script><b>"]')
        doc = assemble_document(q)
        assert doc.count("</script>") == 3
        assert _block(doc, QUERIES_ELEMENT_ID)[0]["selector"] == 'div[title="</script><b>"]'


class TestAssembleBatch:
    def test_all_queries_embedded_in_order(self):
        a = make_query(".highlight", "color")
        b = make_query("#main", None)
        c = make_query("p", "display")
        doc = assemble_batch_document([a, b, c], batch_id="b1", exit_after_report=False)
        assert [item["id"] for item in _block(doc, QUERIES_ELEMENT_ID)] == [a.id, b.id, c.id]
        settings = _block(doc, SETTINGS_ELEMENT_ID)
        assert settings["batch_id"] == "b1"
        assert settings["exit_after_report"] is False

    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError):
            assemble_batch_document([])

    def test_mixed_documents_rejected(self):
        a = make_query(html="<p></p>")
        b = make_query(html="<div></div>")
        with pytest.raises(ValueError, match="share"):
            assemble_batch_document([a, b])


def test_batch_id_depends_on_query_ids():
    a, b = make_query(), make_query()
    assert batch_id_for([a, b]) == batch_id_for([a, b])
    assert batch_id_for([a, b]) != batch_id_for([b, a])
    assert len(batch_id_for([a])) == 16


def test_host_page_announces_ready():
    page = assemble_host_page()
    assert _block(page, DAEMON_ELEMENT_ID) == {"ready_tag": READY_TAG}
    assert f'console.log("{READY_TAG}")' in page
