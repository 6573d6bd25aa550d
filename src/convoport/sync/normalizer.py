"""Content normalization for heterogeneous thread payloads.

Source schemas differ per platform and drift independently, so each field
is read through an ordered list of strategies; the first one that yields
a value wins.
"""

from typing import Any

from convoport.models import Citation, Entry, ThreadDetail

TITLE_MAX_LENGTH = 100
QUERY_FIELDS = ("query", "query_str", "question", "prompt")


def extract_answer(entry: dict[str, Any]) -> str:
    """Extract the answer text from a raw entry.

    Strategies, in order:
      1. structured blocks: an "ask_text" markdown block (answer, or its
         chunks joined by newlines), or a text block
      2. flat "answer", "text" or string "content" fields
      3. nested "response.text" / "response.content"

    Returns an empty string when nothing matches.
    """
    blocks = entry.get("blocks")
    if isinstance(blocks, list):
        for block in blocks:
            if not isinstance(block, dict):
                continue
            markdown = block.get("markdown_block")
            if block.get("intended_usage") == "ask_text" and isinstance(markdown, dict):
                answer = markdown.get("answer") or "\n".join(markdown.get("chunks") or [])
                if answer:
                    return answer
            text_block = block.get("text_block")
            if isinstance(text_block, dict) and text_block.get("content"):
                return text_block["content"]

    if entry.get("answer"):
        return entry["answer"]
    if entry.get("text"):
        return entry["text"]
    if isinstance(entry.get("content"), str) and entry["content"]:
        return entry["content"]

    response = entry.get("response")
    if isinstance(response, dict):
        if response.get("text"):
            return response["text"]
        if isinstance(response.get("content"), str) and response["content"]:
            return response["content"]

    return ""


def extract_query(entry: dict[str, Any]) -> str:
    for key in QUERY_FIELDS:
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _to_citation(raw: Any) -> Citation | None:
    if isinstance(raw, str):
        return Citation(name=raw, url=raw) if raw.startswith("http") else None
    if not isinstance(raw, dict):
        return None
    url = raw.get("url") or raw.get("link")
    if not url:
        return None
    name = raw.get("name") or raw.get("title") or url
    return Citation(name=str(name), url=str(url))


def dedupe_citations(citations: list[Citation]) -> list[Citation]:
    """Drop citations whose URL was already seen, keeping first occurrence."""
    seen: set[str] = set()
    unique = []
    for citation in citations:
        if citation.url in seen:
            continue
        seen.add(citation.url)
        unique.append(citation)
    return unique


def extract_sources(entry: dict[str, Any]) -> list[Citation]:
    """Extract citations from web result blocks, else sources/citations arrays."""
    raw_sources: list[Any] = []

    blocks = entry.get("blocks")
    if isinstance(blocks, list):
        for block in blocks:
            if not isinstance(block, dict) or block.get("intended_usage") != "web_results":
                continue
            web_results = (block.get("web_result_block") or {}).get("web_results")
            if web_results:
                raw_sources = web_results
                break

    if not raw_sources:
        raw_sources = entry.get("sources") or entry.get("citations") or []

    citations = [c for c in (_to_citation(s) for s in raw_sources) if c is not None]
    return dedupe_citations(citations)


def extract_title(data: dict[str, Any], entries: list[Entry] | None = None) -> str:
    """Pick a title: explicit title, then name, then the first query."""
    title = data.get("title")
    if isinstance(title, str) and title.strip() and title != "Untitled":
        return title.strip()[:TITLE_MAX_LENGTH]
    name = data.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()[:TITLE_MAX_LENGTH]
    for entry in entries or []:
        if entry.query:
            return entry.query.strip()[:TITLE_MAX_LENGTH]
    return "Untitled"


def normalize_entry(raw: dict[str, Any]) -> Entry:
    related = raw.get("related_queries") or []
    return Entry(
        query=extract_query(raw).strip(),
        answer=extract_answer(raw).strip(),
        sources=extract_sources(raw),
        related_queries=[str(q) for q in related if q],
    )


def raw_entries(data: dict[str, Any] | None) -> list[dict[str, Any]] | None:
    """Locate the raw entry list in an adapter payload, if it carries one."""
    if not isinstance(data, dict):
        return None
    entries = data.get("entries")
    if entries is None and isinstance(data.get("detail"), dict):
        entries = data["detail"].get("entries")
    if not isinstance(entries, list):
        return None
    return [e for e in entries if isinstance(e, dict)]


class ContentNormalizer:
    """Turns adapter output into canonical entries."""

    def normalize(self, detail: ThreadDetail) -> ThreadDetail:
        """Return a copy of detail with canonical entries and title.

        Payloads that carry raw entries are re-extracted through the
        fallback chains; entries already built by the adapter are cleaned.
        """
        raw = raw_entries(detail.raw)
        if raw is not None:
            entries = [normalize_entry(e) for e in raw]
        else:
            entries = [
                Entry(
                    query=e.query.strip(),
                    answer=e.answer.strip(),
                    sources=dedupe_citations(e.sources),
                    related_queries=list(e.related_queries),
                )
                for e in detail.entries
            ]

        title_source = dict(detail.raw or {})
        title_source["title"] = detail.title or title_source.get("title")
        return ThreadDetail(
            id=detail.id,
            title=extract_title(title_source, entries),
            entries=entries,
            platform=detail.platform,
            updated_at=detail.updated_at,
            raw=detail.raw,
        )
