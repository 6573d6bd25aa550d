"""Markdown rendering of normalized threads."""

import re
from datetime import date

from convoport.models import ThreadDetail
from convoport.sync.notion import THREAD_URLS

YAML_SPECIAL = (":", "#", "'", '"', "\n")


def escape_yaml_value(value: str | None) -> str:
    if not value:
        return ""
    if any(ch in value for ch in YAML_SPECIAL):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'
    return value


def safe_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", name or "Thread") + ".md"


def format_markdown(detail: ThreadDetail, platform: str, today: date | None = None) -> str:
    """Render a thread as markdown with a front matter header."""
    day = (detail.updated_at or "")[:10] or (today or date.today()).isoformat()
    url_template = THREAD_URLS.get(platform)

    lines = [
        "---",
        f"title: {escape_yaml_value(detail.title or 'Untitled Chat')}",
        f"date: {day}",
    ]
    if url_template:
        lines.append(f"url: {url_template.format(id=detail.id)}")
    lines.extend([f"source: {platform}", "---", ""])

    for entry in detail.entries:
        if entry.query:
            lines.extend([f"## {entry.query}", ""])
        if entry.answer:
            lines.extend([entry.answer, ""])
        if entry.sources:
            lines.append("**Sources**")
            lines.extend(f"- [{s.name}]({s.url})" for s in entry.sources)
            lines.append("")
        lines.extend(["---", ""])

    return "\n".join(lines)
