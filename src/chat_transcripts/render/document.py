from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .text import render_transcript_text

if TYPE_CHECKING:
    from ..assemble import Document

OUTPUT_FORMATS = frozenset({"json", "yaml", "text"})


class _LiteralString(str):
    pass


def _literal_strings(value: Any) -> Any:
    if isinstance(value, str):
        return _LiteralString(value) if "\n" in value else value
    if isinstance(value, dict):
        return {k: _literal_strings(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_literal_strings(v) for v in value]
    return value


def _render_yaml(data: dict[str, Any]) -> str:
    import yaml

    class _TranscriptDumper(yaml.SafeDumper):
        pass

    def _repr_literal(dumper, value):
        return dumper.represent_scalar("tag:yaml.org,2002:str", str(value), style="|")

    _TranscriptDumper.add_representer(_LiteralString, _repr_literal)
    return yaml.dump(
        _literal_strings(data),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        Dumper=_TranscriptDumper,
    )


def _render_markdown_frontmatter(content: str, metadata: dict[str, Any]) -> str:
    import yaml

    frontmatter = yaml.safe_dump(
        metadata,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    ).strip()
    return f"---\n{frontmatter}\n---\n\n{content.lstrip()}"


def dump_document(
    document: Document, format: str = "json", *, include_metadata: bool = True
) -> str:
    if format not in OUTPUT_FORMATS:
        raise ValueError(f"unknown output format: {format!r}")
    data = document.to_data()
    if format == "json":
        return json.dumps(data, ensure_ascii=False, indent=2) + "\n"
    if format == "yaml":
        return _render_yaml(data)
    rendered = render_transcript_text(data)
    if not include_metadata:
        return rendered
    return _render_markdown_frontmatter(rendered, data["metadata"])
