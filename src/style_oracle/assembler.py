"""Builds the HTML documents the engine renders to answer style queries.

A document inlines the caller's markup and stylesheets, embeds the queries as
a JSON data block, and ends with a reporting script. Once the page has loaded
the script resolves each query with ``getComputedStyle`` and prints one
payload line per query, then an end-of-batch marker. When the engine is
expected to exit after the batch, ``window.close()`` is scheduled only after
the output has been written, so the payload is flushed before shutdown.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Sequence

from style_oracle.model.query import NOT_MATCHED_PREFIX, StyleQuery
from style_oracle.model.wire import BATCH_END_TAG, READY_TAG, RESULT_TAG

QUERIES_ELEMENT_ID = "style-oracle-queries"
SETTINGS_ELEMENT_ID = "style-oracle-settings"
DAEMON_ELEMENT_ID = "style-oracle-daemon"

DEFAULT_CLOSE_DELAY_MS = 500

_REPORTING_SCRIPT = """\
(function () {
  function readJson(id) {
    return JSON.parse(document.getElementById(id).textContent);
  }

  function answer(settings, query) {
    var element;
    try {
      element = document.querySelector(query.selector);
    } catch (e) {
      return {id: query.id, success: false,
              error: settings.not_matched + ': invalid selector ' + query.selector + ' (' + e.message + ')'};
    }
    if (!element) {
      return {id: query.id, success: false, error: settings.not_matched + ': ' + query.selector};
    }
    var style = window.getComputedStyle(element, query.pseudo_element || null);
    if (query.property !== null) {
      return {id: query.id, success: true, computed_value: style.getPropertyValue(query.property)};
    }
    var styles = {};
    for (var i = 0; i < style.length; i++) {
      styles[style[i]] = style.getPropertyValue(style[i]);
    }
    return {id: query.id, success: true, computed_styles: styles};
  }

  function report() {
    var settings = readJson('%(settings_id)s');
    var queries = readJson('%(queries_id)s');
    for (var i = 0; i < queries.length; i++) {
      var result;
      try {
        result = answer(settings, queries[i]);
      } catch (e) {
        result = {id: queries[i].id, success: false, error: 'script error: ' + e.message};
      }
      console.log(settings.result_tag + JSON.stringify(result));
    }
    console.log(settings.end_tag + settings.batch_id);
    if (settings.exit_after_report) {
      setTimeout(function () { window.close(); }, settings.close_delay_ms);
    }
  }

  window.addEventListener('load', function () { setTimeout(report, 0); });
})();
""" % {"settings_id": SETTINGS_ELEMENT_ID, "queries_id": QUERIES_ELEMENT_ID}


def _json_block(element_id: str, data: Any) -> str:
    # Escape characters that could end the script element or start markup.
    text = json.dumps(data, sort_keys=True)
    text = text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return f'<script type="application/json" id="{element_id}">{text}</script>'


def batch_id_for(queries: Sequence[StyleQuery]) -> str:
    """Deterministic identifier for a group of queries."""
    digest = hashlib.sha1("\n".join(q.id for q in queries).encode("utf-8"))
    return digest.hexdigest()[:16]


def assemble_batch_document(
    queries: Sequence[StyleQuery],
    *,
    batch_id: str | None = None,
    close_delay_ms: int = DEFAULT_CLOSE_DELAY_MS,
    exit_after_report: bool = True,
) -> str:
    """Build one document answering every query in *queries*.

    All queries must share the same markup and stylesheets; they are taken
    from the first query.
    """
    if not queries:
        raise ValueError("cannot assemble a document for zero queries")
    first = queries[0]
    for query in queries[1:]:
        if query.document_key != first.document_key:
            raise ValueError("queries in one document must share markup and stylesheets")

    settings = {
        "batch_id": batch_id or batch_id_for(queries),
        "close_delay_ms": close_delay_ms,
        "end_tag": BATCH_END_TAG,
        "exit_after_report": exit_after_report,
        "not_matched": NOT_MATCHED_PREFIX,
        "result_tag": RESULT_TAG,
    }
    # Later stylesheets win on equal specificity, so keep submission order.
    styles = "\n".join(f"<style>\n{css}\n</style>" for css in first.css)

    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="utf-8">\n'
        f"{styles}\n"
        "</head>\n"
        "<body>\n"
        f"{first.html}\n"
        f"{_json_block(SETTINGS_ELEMENT_ID, settings)}\n"
        f"{_json_block(QUERIES_ELEMENT_ID, [q.to_dict() for q in queries])}\n"
        f"<script>\n{_REPORTING_SCRIPT}</script>\n"
        "</body>\n"
        "</html>\n"
    )


def assemble_document(
    query: StyleQuery,
    *,
    close_delay_ms: int = DEFAULT_CLOSE_DELAY_MS,
    exit_after_report: bool = True,
) -> str:
    """Build the document for a single query."""
    return assemble_batch_document(
        [query],
        close_delay_ms=close_delay_ms,
        exit_after_report=exit_after_report,
    )


def assemble_host_page() -> str:
    """Initial page for a daemon engine; announces readiness on load."""
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="utf-8">\n'
        "<title>style oracle daemon</title>\n"
        "</head>\n"
        "<body>\n"
        f"{_json_block(DAEMON_ELEMENT_ID, {'ready_tag': READY_TAG})}\n"
        f"<script>console.log({json.dumps(READY_TAG)});</script>\n"
        "</body>\n"
        "</html>\n"
    )
