from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol, Sequence

from chatnav.core.types import CandidateRef

RetrievalStatus = Literal["found", "ambiguous", "weak", "no_match"]

_STOPWORDS = frozenset(
    {"a", "an", "the", "is", "are", "what", "how", "do", "does", "i", "to", "my", "of", "about", "use", "work"}
)


@dataclass(frozen=True, slots=True)
class DocResult:
    doc_slug: str
    title: str
    header_path: str | None = None
    category: str = "Documentation"
    snippet: str = ""

    @property
    def display_label(self) -> str:
        return self.header_path or self.title


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    status: RetrievalStatus
    results: tuple[DocResult, ...] = ()
    clarification: str | None = None


class DocRetriever(Protocol):
    def retrieve(self, query: str) -> RetrievalResult:
        ...


class NullDocRetriever:
    def retrieve(self, query: str) -> RetrievalResult:
        return RetrievalResult(status="no_match")


@dataclass(slots=True)
class StaticDocRetriever:
    """Title/keyword lookup over a fixed document list.

    Stands in for the real ranking engine in fixtures and the CLI.
    """

    docs: list[DocResult] = field(default_factory=list)

    def retrieve(self, query: str) -> RetrievalResult:
        terms = _terms(query)
        if not terms:
            return RetrievalResult(status="no_match")
        joined = " ".join(terms)
        exact = [doc for doc in self.docs if " ".join(_terms(doc.title)) == joined]
        if len(exact) == 1:
            return RetrievalResult(status="found", results=(exact[0],))
        scored: list[tuple[int, DocResult]] = []
        for doc in self.docs:
            doc_terms = set(_terms(doc.title)) | set(_terms(doc.header_path or ""))
            overlap = len(doc_terms & set(terms))
            if overlap:
                scored.append((overlap, doc))
        if not scored:
            return RetrievalResult(status="no_match")
        scored.sort(key=lambda item: (-item[0], item[1].doc_slug))
        top_score = scored[0][0]
        top = [doc for score, doc in scored if score == top_score]
        if len(top) >= 2:
            return RetrievalResult(status="ambiguous", results=tuple(top[:2]))
        if top_score == len(terms):
            return RetrievalResult(status="found", results=(top[0],))
        return RetrievalResult(status="weak", results=(top[0],))

    @classmethod
    def from_json(cls, path: Path) -> "StaticDocRetriever":
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError("docs file must contain a list")
        docs = []
        for item in payload:
            if not isinstance(item, dict) or not isinstance(item.get("doc_slug"), str):
                raise ValueError("doc entries must include a doc_slug string")
            docs.append(
                DocResult(
                    doc_slug=item["doc_slug"],
                    title=str(item.get("title", item["doc_slug"])),
                    header_path=item.get("header_path"),
                    category=str(item.get("category", "Documentation")),
                    snippet=str(item.get("snippet", "")),
                )
            )
        return cls(docs=docs)


def _terms(text: str) -> list[str]:
    return [token for token in re.findall(r"[a-z0-9]+", text.lower()) if token not in _STOPWORDS]


def doc_candidates(results: Sequence[DocResult]) -> tuple[CandidateRef, ...]:
    return tuple(
        CandidateRef(
            id=result.doc_slug,
            label=result.display_label,
            type="doc",
            scope="chat",
            sublabel=result.category,
        )
        for result in results
    )
