"""Turn raw tracker records into flat :class:`CanonicalDocument` objects.

Raw records look like ``{"id", "key", "fields": {...}}`` where
``fields.description`` and comment bodies are rich-text ASTs
(``{"type": "doc", "content": [...]}``).  The AST is flattened by a
dispatch table keyed on the node ``type``; unknown kinds fall back to the
concatenated text of their children.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from tracker_sync.config import NormalizerConfig
from tracker_sync.errors import MalformedRecord
from tracker_sync.models import CanonicalDocument, Comment

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``+0900`` offsets included); ``None`` if unparsable.

    Naive values are assumed to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            try:
                parsed = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S.%f%z")
            except ValueError:
                logger.debug("Unparsable timestamp %r", value)
                return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Rich-text AST
# ---------------------------------------------------------------------------


def _children(node: Mapping[str, Any]) -> list[Any]:
    content = node.get("content")
    return content if isinstance(content, list) else []


def _join_children(node: Mapping[str, Any], sep: str) -> str:
    return sep.join(extract_text(child) for child in _children(node))


def _render_text(node: Mapping[str, Any]) -> str:
    text = node.get("text")
    return text if isinstance(text, str) else ""


def _render_bullet_list(node: Mapping[str, Any]) -> str:
    return "\n".join(f"- {extract_text(item)}" for item in _children(node))


def _render_ordered_list(node: Mapping[str, Any]) -> str:
    attrs = node.get("attrs") or {}
    first = attrs.get("order", 1) if isinstance(attrs, Mapping) else 1
    if not isinstance(first, int):
        first = 1
    return "\n".join(f"{first + i}. {extract_text(item)}" for i, item in enumerate(_children(node)))


def _render_table(node: Mapping[str, Any]) -> str:
    return "\n".join(extract_text(row) for row in _children(node))


def _render_table_row(node: Mapping[str, Any]) -> str:
    return " | ".join(extract_text(cell).strip() for cell in _children(node))


def _render_attr(name: str) -> Callable[[Mapping[str, Any]], str]:
    def _render(node: Mapping[str, Any]) -> str:
        attrs = node.get("attrs") or {}
        value = attrs.get(name) if isinstance(attrs, Mapping) else None
        return value if isinstance(value, str) else ""

    return _render


def _render_unknown(node: Mapping[str, Any]) -> str:
    return _join_children(node, "")


_NODE_RENDERERS: dict[str, Callable[[Mapping[str, Any]], str]] = {
    "doc": lambda n: _join_children(n, "\n"),
    "paragraph": lambda n: _join_children(n, ""),
    "heading": lambda n: _join_children(n, ""),
    "text": _render_text,
    "hardBreak": lambda n: "\n",
    "rule": lambda n: "---",
    "bulletList": _render_bullet_list,
    "orderedList": _render_ordered_list,
    "listItem": lambda n: _join_children(n, ""),
    "blockquote": lambda n: _join_children(n, "\n"),
    "codeBlock": lambda n: _join_children(n, ""),
    "table": _render_table,
    "tableRow": _render_table_row,
    "tableCell": lambda n: _join_children(n, "\n"),
    "tableHeader": lambda n: _join_children(n, "\n"),
    "mention": _render_attr("text"),
    "emoji": _render_attr("text"),
    "inlineCard": _render_attr("url"),
}


def extract_text(node: Any) -> str:
    """Flatten a rich-text AST node into plain text.  Never raises."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(extract_text(child) for child in node)
    if not isinstance(node, Mapping):
        return ""
    renderer = _NODE_RENDERERS.get(node.get("type"), _render_unknown)
    return renderer(node)


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def _display(value: Any) -> str:
    """Best-effort string for a field value (``{name}``, ``{value}``, lists, scalars)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(s for s in (_display(v) for v in value) if s)
    if isinstance(value, Mapping):
        for key in ("displayName", "name", "value", "key"):
            if isinstance(value.get(key), str):
                return value[key].strip()
        if value.get("type") == "doc":
            return extract_text(value).strip()
    return ""


def _standard_fields(fields: Mapping[str, Any]) -> dict[str, str]:
    status = fields.get("status") if isinstance(fields.get("status"), Mapping) else {}
    project = fields.get("project") if isinstance(fields.get("project"), Mapping) else {}
    values = {
        "status": _display(status),
        "status_category": _display(status.get("statusCategory")),
        "priority": _display(fields.get("priority")),
        "assignee": _display(fields.get("assignee")) or "(unassigned)",
        "reporter": _display(fields.get("reporter")) or "(unknown)",
        "labels": _display(fields.get("labels")),
        "issue_type": _display(fields.get("issuetype")),
        "project_key": _display(project.get("key")),
        "project_name": _display(project.get("name")),
    }
    return {k: v for k, v in values.items() if v}


def parse_comments(raw_comments: Any) -> list[Comment]:
    """Parse raw comment objects and order them oldest first."""
    if not isinstance(raw_comments, list):
        return []
    comments = []
    for raw in raw_comments:
        if not isinstance(raw, Mapping):
            continue
        author = _display(raw.get("updateAuthor")) or _display(raw.get("author")) or "(unknown)"
        comments.append(
            Comment(
                author=author,
                created_at=parse_timestamp(raw.get("created")),
                body_text=extract_text(raw.get("body")).strip(),
            )
        )
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(comments, key=lambda c: c.created_at or epoch)


def parse_history(raw_history: Any) -> list[str]:
    """Render change-history entries as ``created author: field from → to`` lines."""
    if isinstance(raw_history, Mapping):
        raw_history = raw_history.get("histories", [])
    if not isinstance(raw_history, list):
        return []
    lines = []
    for entry in raw_history:
        if not isinstance(entry, Mapping):
            continue
        who = _display(entry.get("author")) or "(unknown)"
        when = entry.get("created") or ""
        for item in entry.get("items") or []:
            if not isinstance(item, Mapping):
                continue
            lines.append(
                f"{when} {who}: {item.get('field', '?')} "
                f"{item.get('fromString') or '-'} → {item.get('toString') or '-'}"
            )
    return lines


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class Normalizer:
    """Converts raw records into :class:`CanonicalDocument` objects.

    Parameters
    ----------
    config:
        Base URL for record links, the comment truncation threshold and
        the custom-field name map.
    """

    def __init__(self, config: NormalizerConfig | None = None) -> None:
        self.config = config or NormalizerConfig()

    def normalize(self, raw: Any) -> CanonicalDocument:
        """Normalise one raw record.

        Raises
        ------
        MalformedRecord
            When *raw* is not a mapping or carries neither ``key`` nor ``id``.
            Every other oddity degrades to empty values.
        """
        if not isinstance(raw, Mapping):
            raise MalformedRecord(f"record is {type(raw).__name__}, expected an object")
        record_id = raw.get("key") or raw.get("id")
        if not isinstance(record_id, (str, int)) or isinstance(record_id, bool) or str(record_id) == "":
            raise MalformedRecord("record has no key or id", record_ref=str(raw)[:100])
        record_id = str(record_id)

        fields = raw.get("fields")
        if not isinstance(fields, Mapping):
            fields = {}

        custom = _standard_fields(fields)
        for field_id, name in self.config.custom_field_names.items():
            value = _display(fields.get(field_id))
            if value:
                custom[name] = value

        comment_block = fields.get("comment")
        inline_raw = []
        reported_total = 0
        if isinstance(comment_block, Mapping):
            inline_raw = comment_block.get("comments") or []
            total = comment_block.get("total")
            reported_total = total if isinstance(total, int) else 0
        comments = parse_comments(inline_raw)
        truncated = (
            len(comments) >= self.config.comment_truncation_threshold
            or reported_total > len(comments)
        )

        return CanonicalDocument(
            id=record_id,
            title=_display(fields.get("summary")),
            body_text=extract_text(fields.get("description")).strip(),
            custom_fields=custom,
            created_at=parse_timestamp(fields.get("created")),
            updated_at=parse_timestamp(fields.get("updated")),
            source_url=f"{self.config.base_url}/browse/{record_id}" if self.config.base_url else "",
            comments=comments,
            needs_comment_enrichment=truncated,
            raw_payload=json.dumps(raw, ensure_ascii=False, default=str),
        )


def apply_comments(document: CanonicalDocument, raw_comments: Any) -> CanonicalDocument:
    """Return a copy of *document* whose comments come from a full comment fetch."""
    if isinstance(raw_comments, Mapping):
        raw_comments = raw_comments.get("comments", [])
    return document.model_copy(
        update={"comments": parse_comments(raw_comments), "needs_comment_enrichment": False}
    )


def apply_history(document: CanonicalDocument, raw_record: Any) -> CanonicalDocument:
    """Return a copy of *document* with change history from an ``expand=history`` fetch."""
    history: Any = None
    if isinstance(raw_record, Mapping):
        history = raw_record.get("history") or raw_record.get("changelog")
    return document.model_copy(update={"history": parse_history(history)})
