from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatnav.routing.docs import DocResult, NullDocRetriever, StaticDocRetriever, doc_candidates

DOCS = [
    DocResult(doc_slug="navigator", title="Navigator", snippet="The navigator lists entries."),
    DocResult(doc_slug="quick-links", title="Quick Links"),
    DocResult(doc_slug="links-panel", title="Links Panel", header_path="Widgets > Links Panel"),
]


def test_exact_title_is_found() -> None:
    result = StaticDocRetriever(DOCS).retrieve("what is the navigator?")

    assert result.status == "found"
    assert result.results[0].doc_slug == "navigator"


def test_shared_term_is_ambiguous() -> None:
    result = StaticDocRetriever(DOCS).retrieve("links")

    assert result.status == "ambiguous"
    assert {doc.doc_slug for doc in result.results} == {"quick-links", "links-panel"}


def test_partial_overlap_is_weak() -> None:
    result = StaticDocRetriever(DOCS).retrieve("navigator shortcuts")

    assert result.status == "weak"
    assert result.results[0].doc_slug == "navigator"


def test_no_match() -> None:
    assert StaticDocRetriever(DOCS).retrieve("banana").status == "no_match"
    assert StaticDocRetriever(DOCS).retrieve("what is the").status == "no_match"
    assert NullDocRetriever().retrieve("navigator").status == "no_match"


def test_doc_candidates_use_header_path() -> None:
    candidates = doc_candidates(DOCS[1:])

    assert [candidate.label for candidate in candidates] == ["Quick Links", "Widgets > Links Panel"]
    assert {candidate.scope for candidate in candidates} == {"chat"}
    assert {candidate.type for candidate in candidates} == {"doc"}


def test_from_json(tmp_path: Path) -> None:
    path = tmp_path / "docs.json"
    path.write_text(json.dumps([{"doc_slug": "demo", "title": "Demo"}]), encoding="utf-8")

    retriever = StaticDocRetriever.from_json(path)

    assert retriever.retrieve("demo").status == "found"


def test_from_json_rejects_bad_entries(tmp_path: Path) -> None:
    path = tmp_path / "docs.json"
    path.write_text(json.dumps([{"title": "No slug"}]), encoding="utf-8")

    with pytest.raises(ValueError):
        StaticDocRetriever.from_json(path)
