from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from ..models import parse_timestamp

_REPLY_QUOTE_MAX_CHARS = 200
_WRAPPERS = {
    "bold": "**",
    "italic": "*",
    "underline": "__",
    "strikethrough": "~~",
    "spoiler": "||",
}


def _escape_xml_attr(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace('"', "&quot;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
    )


def _quote_lines(text: str) -> str:
    return "\n".join(f"> {line}" if line else ">" for line in text.splitlines())


def node_text(node: Mapping[str, Any]) -> str:
    node_type = node.get("type")
    children = node.get("children")
    inner = nodes_text(children) if isinstance(children, list) else ""
    if node_type == "text":
        return str(node.get("content") or "")
    if node_type in _WRAPPERS:
        marker = _WRAPPERS[node_type]
        return f"{marker}{inner}{marker}"
    if node_type == "inline_code":
        return f"`{node.get('content') or ''}`"
    if node_type == "code_block":
        language = node.get("language") or ""
        return f"```{language}\n{node.get('content') or ''}\n```"
    if node_type == "blockquote":
        return _quote_lines(inner)
    if node_type == "heading":
        return f"{'#' * int(node.get('level') or 1)} {inner}"
    if node_type == "link":
        url = str(node.get("url") or "")
        if not inner or inner == url:
            return url
        return f"[{inner}]({url})"
    if node_type in ("mention", "timestamp"):
        return str(node.get("display") or node.get("id") or node.get("epoch") or "")
    if node_type == "emoji":
        return f":{node.get('name') or ''}:"
    return inner


def nodes_text(nodes: Sequence[Mapping[str, Any]] | None) -> str:
    if not nodes:
        return ""
    return "".join(node_text(node) for node in nodes if isinstance(node, Mapping))


def _format_reply_quote(reply: Mapping[str, Any]) -> list[str]:
    content = nodes_text(reply.get("content")).strip()
    author = reply.get("author")
    if not content:
        return [f"> (reply to {author})"] if author else []
    if len(content) > _REPLY_QUOTE_MAX_CHARS:
        content = content[: _REPLY_QUOTE_MAX_CHARS - 1].rstrip() + "…"
    if author:
        content = f"{author}: {content}"
    return _quote_lines(content).splitlines()


def _format_dimensions(node: Mapping[str, Any]) -> str:
    width = node.get("width")
    height = node.get("height")
    if isinstance(width, int) and isinstance(height, int):
        return f"{width}x{height}"
    return ""


def _format_attachment(node: Mapping[str, Any]) -> str:
    attrs = [f'type="{_escape_xml_attr(str(node.get("kind") or "file"))}"']
    url = node.get("url")
    if url:
        attrs.append(f'url="{_escape_xml_attr(str(url))}"')
    filename = node.get("filename")
    if filename:
        attrs.append(f'filename="{_escape_xml_attr(str(filename))}"')
    dimensions = _format_dimensions(node)
    if dimensions:
        attrs.append(f'dimensions="{dimensions}"')
    if node.get("spoiler"):
        attrs.append('spoiler="true"')
    return f"<attachment {' '.join(attrs)} />"


def _format_embed(node: Mapping[str, Any]) -> list[str]:
    attrs: list[str] = []
    url = node.get("url")
    if url:
        attrs.append(f'url="{_escape_xml_attr(str(url))}"')
    attr_suffix = f" {' '.join(attrs)}" if attrs else ""
    lines = [f"<embed{attr_suffix}>"]
    author = node.get("author")
    if isinstance(author, Mapping) and author.get("name"):
        lines.append(str(author["name"]))
    for key in ("title", "description"):
        text = nodes_text(node.get(key)).strip()
        if text:
            lines.append(text)
    for item in node.get("fields") or []:
        name = nodes_text(item.get("name")).strip()
        value = nodes_text(item.get("value")).strip()
        lines.append(f"{name}: {value}" if name else value)
    for key in ("image", "thumbnail"):
        media = node.get(key)
        if media:
            lines.append(f'<image url="{_escape_xml_attr(str(media))}" />')
    footer = node.get("footer")
    if isinstance(footer, Mapping):
        text = nodes_text(footer.get("text")).strip()
        if text:
            lines.append(text)
    lines.append("</embed>")
    return lines


def _format_reactions(reactions: Sequence[Mapping[str, Any]]) -> str:
    parts = []
    for reaction in reactions:
        name = str(reaction.get("name") or "")
        label = f":{name}:" if reaction.get("id") else name
        parts.append(f"{label} {reaction.get('count') or 1}")
    return f"[reactions: {', '.join(parts)}]"


def _sender(fragment: Mapping[str, Any], profiles: Sequence[Mapping[str, Any]]) -> str:
    key = fragment.get("profile")
    if isinstance(key, int) and 0 <= key < len(profiles):
        name = profiles[key].get("name")
        if name:
            return str(name)
    return "unknown"


def render_transcript_text(data: Mapping[str, Any]) -> str:
    """Plain transcript: a ``<date>`` line per UTC day, then ``[sender]`` blocks."""
    profiles = data.get("profiles") or []
    lines: list[str] = []
    previous_date: str | None = None

    for fragment in data.get("messages") or []:
        timestamp: datetime | None = parse_timestamp(fragment.get("timestamp"))
        if timestamp is None:
            continue
        date_str = timestamp.date().isoformat()
        if previous_date != date_str:
            lines.append("")
            lines.append(f"<{date_str}>")
            previous_date = date_str

        lines.append(f"[{_sender(fragment, profiles)}]")
        reply = fragment.get("reply")
        if isinstance(reply, Mapping):
            lines.extend(_format_reply_quote(reply))
        system = fragment.get("system")
        content = nodes_text(fragment.get("content"))
        if system:
            lines.append(f"* {system}")
        elif content:
            lines.append(content)
        for attachment in fragment.get("attachments") or []:
            lines.append(_format_attachment(attachment))
        for embed in fragment.get("embeds") or []:
            lines.extend(_format_embed(embed))
        reactions = fragment.get("reactions")
        if reactions:
            lines.append(_format_reactions(reactions))
        lines.append("")

    footer = (data.get("metadata") or {}).get("footer")
    if footer:
        lines.append(str(footer))
    rendered = "\n".join(lines).strip()
    return rendered + "\n"
