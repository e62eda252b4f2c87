from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Union

MENTION_KINDS = frozenset({"user", "role", "channel", "everyone"})
TIMESTAMP_STYLES = frozenset("tTdDfFR")


@dataclass(frozen=True)
class Text:
    content: str
    type = "text"


@dataclass(frozen=True)
class Bold:
    children: tuple["MarkupNode", ...]
    type = "bold"


@dataclass(frozen=True)
class Italic:
    children: tuple["MarkupNode", ...]
    type = "italic"


@dataclass(frozen=True)
class Underline:
    children: tuple["MarkupNode", ...]
    type = "underline"


@dataclass(frozen=True)
class Strikethrough:
    children: tuple["MarkupNode", ...]
    type = "strikethrough"


@dataclass(frozen=True)
class Spoiler:
    children: tuple["MarkupNode", ...]
    type = "spoiler"


@dataclass(frozen=True)
class BlockQuote:
    children: tuple["MarkupNode", ...]
    type = "blockquote"


@dataclass(frozen=True)
class Heading:
    level: int
    children: tuple["MarkupNode", ...]
    type = "heading"


@dataclass(frozen=True)
class InlineCode:
    content: str
    type = "inline_code"


@dataclass(frozen=True)
class CodeBlock:
    language: str | None
    content: str
    type = "code_block"


@dataclass(frozen=True)
class Link:
    url: str
    children: tuple["MarkupNode", ...]
    type = "link"


@dataclass(frozen=True)
class Mention:
    kind: str
    id: str
    type = "mention"

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.id)


@dataclass(frozen=True)
class CustomEmoji:
    id: str
    name: str
    animated: bool = False
    type = "emoji"


@dataclass(frozen=True)
class Timestamp:
    epoch: int
    style: str = "f"
    type = "timestamp"


MarkupNode = Union[
    Text,
    Bold,
    Italic,
    Underline,
    Strikethrough,
    Spoiler,
    BlockQuote,
    Heading,
    InlineCode,
    CodeBlock,
    Link,
    Mention,
    CustomEmoji,
    Timestamp,
]

CONTAINER_TYPES = (
    Bold,
    Italic,
    Underline,
    Strikethrough,
    Spoiler,
    BlockQuote,
    Heading,
    Link,
)


def iter_nodes(nodes: Iterable[MarkupNode]) -> Iterator[MarkupNode]:
    """Depth-first, document-order walk over a node sequence."""
    for node in nodes:
        yield node
        if isinstance(node, CONTAINER_TYPES):
            yield from iter_nodes(node.children)


def plain_text(nodes: Iterable[MarkupNode]) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, (Text, InlineCode, CodeBlock)):
            parts.append(node.content)
        elif isinstance(node, CONTAINER_TYPES):
            parts.append(plain_text(node.children))
        elif isinstance(node, CustomEmoji):
            parts.append(f":{node.name}:")
    return "".join(parts)


def node_to_data(node: MarkupNode) -> dict[str, Any]:
    if isinstance(node, (Text, InlineCode)):
        return {"type": node.type, "content": node.content}
    if isinstance(node, CodeBlock):
        return {"type": node.type, "language": node.language, "content": node.content}
    if isinstance(node, Heading):
        return {
            "type": node.type,
            "level": node.level,
            "children": nodes_to_data(node.children),
        }
    if isinstance(node, Link):
        return {
            "type": node.type,
            "url": node.url,
            "children": nodes_to_data(node.children),
        }
    if isinstance(node, CONTAINER_TYPES):
        return {"type": node.type, "children": nodes_to_data(node.children)}
    if isinstance(node, Mention):
        return {"type": node.type, "kind": node.kind, "id": node.id}
    if isinstance(node, CustomEmoji):
        return {
            "type": node.type,
            "id": node.id,
            "name": node.name,
            "animated": node.animated,
        }
    if isinstance(node, Timestamp):
        return {"type": node.type, "epoch": node.epoch, "style": node.style}
    raise TypeError(f"unsupported markup node: {type(node).__name__}")


def nodes_to_data(nodes: Iterable[MarkupNode]) -> list[dict[str, Any]]:
    return [node_to_data(node) for node in nodes]
