from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..markup.emoji import custom_emoji_url
from ..markup.nodes import (
    CONTAINER_TYPES,
    CustomEmoji,
    MarkupNode,
    Mention,
    Timestamp,
    iter_nodes,
    node_to_data,
)
from ..markup.parser import ParsedContent
from ..models import Attachment, Embed, Message, Reaction, format_timestamp
from ..resolve.entities import EntityResolver, missing_entity

_TIMESTAMP_FORMATS = {
    "t": "%H:%M",
    "T": "%H:%M:%S",
    "d": "%d/%m/%Y",
    "D": "%d %B %Y",
    "f": "%d %B %Y %H:%M",
    "F": "%A, %d %B %Y %H:%M",
    "R": "%d %B %Y %H:%M",
}

_SYSTEM_MESSAGES = {
    1: "{name} added a recipient.",
    2: "{name} removed a recipient.",
    4: "{name} changed the channel name.",
    6: "{name} pinned a message to this channel.",
    7: "{name} joined the server.",
    8: "{name} boosted the server!",
    9: "{name} boosted the server! The server reached level 1!",
    10: "{name} boosted the server! The server reached level 2!",
    11: "{name} boosted the server! The server reached level 3!",
    18: "{name} started a thread.",
}


@dataclass(frozen=True)
class ParsedEmbed:
    embed: Embed
    title: tuple[MarkupNode, ...] = ()
    description: tuple[MarkupNode, ...] = ()
    fields: tuple[tuple[tuple[MarkupNode, ...], tuple[MarkupNode, ...]], ...] = ()
    footer: tuple[MarkupNode, ...] = ()

    def trees(self) -> Iterable[tuple[MarkupNode, ...]]:
        yield self.title
        yield self.description
        for name, value in self.fields:
            yield name
            yield value
        yield self.footer


@dataclass(frozen=True)
class ParsedMessage:
    message: Message
    profile: int
    content: ParsedContent
    reply: tuple[MarkupNode, ...] | None = None
    embeds: tuple[ParsedEmbed, ...] = ()

    def trees(self) -> Iterable[tuple[MarkupNode, ...]]:
        yield self.content.nodes
        if self.reply:
            yield self.reply
        for embed in self.embeds:
            yield from embed.trees()

    def walk(self) -> Iterable[MarkupNode]:
        for tree in self.trees():
            yield from iter_nodes(tree)


def format_markup_timestamp(epoch: int, style: str) -> str:
    try:
        value = datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return str(epoch)
    return value.strftime(_TIMESTAMP_FORMATS.get(style, _TIMESTAMP_FORMATS["f"]))


def render_node(node: MarkupNode, resolver: EntityResolver) -> dict[str, Any]:
    if isinstance(node, CONTAINER_TYPES):
        data = {k: v for k, v in node_to_data(node).items() if k != "children"}
        data["children"] = render_nodes(node.children, resolver)
        return data
    data = node_to_data(node)
    if isinstance(node, Mention):
        entity = resolver.get(node.kind, node.id) or missing_entity(node.kind, node.id)
        data["name"] = entity.name
        data["display"] = entity.display
        data["exists"] = entity.exists
        if entity.color:
            data["color"] = entity.color
    elif isinstance(node, CustomEmoji):
        data["image"] = custom_emoji_url(node.id, animated=node.animated)
    elif isinstance(node, Timestamp):
        data["display"] = format_markup_timestamp(node.epoch, node.style)
    return data


def render_nodes(
    nodes: Iterable[MarkupNode], resolver: EntityResolver
) -> list[dict[str, Any]]:
    return [render_node(node, resolver) for node in nodes]


def _clean(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v not in (None, "", [])}


def _render_attachment(attachment: Attachment) -> dict[str, Any]:
    kind = attachment.kind
    return _clean(
        {
            "id": attachment.id,
            "kind": kind,
            "url": attachment.url,
            "filename": attachment.filename,
            "content_type": attachment.content_type,
            "size": attachment.size,
            "width": attachment.width,
            "height": attachment.height,
            "description": attachment.description,
            "spoiler": attachment.spoiler or None,
            "image": attachment.url if kind == "image" else None,
        }
    )


def _render_embed(parsed: ParsedEmbed, resolver: EntityResolver) -> dict[str, Any]:
    embed = parsed.embed
    author = None
    if embed.author is not None:
        author = _clean(
            {
                "name": embed.author.name,
                "url": embed.author.url,
                "image": embed.author.icon_url,
            }
        )
    footer = None
    if embed.footer is not None:
        footer = _clean(
            {
                "text": render_nodes(parsed.footer, resolver),
                "image": embed.footer.icon_url,
            }
        )
    fields = [
        {
            "name": render_nodes(name, resolver),
            "value": render_nodes(value, resolver),
            "inline": field.inline,
        }
        for (name, value), field in zip(parsed.fields, embed.fields)
    ]
    return _clean(
        {
            "title": render_nodes(parsed.title, resolver),
            "description": render_nodes(parsed.description, resolver),
            "url": embed.url,
            "color": embed.color,
            "timestamp": format_timestamp(embed.timestamp),
            "author": author,
            "footer": footer,
            "fields": fields,
            "image": embed.image.url if embed.image else None,
            "thumbnail": embed.thumbnail.url if embed.thumbnail else None,
        }
    )


def _render_reaction(reaction: Reaction) -> dict[str, Any]:
    return _clean(
        {
            "name": reaction.emoji_name,
            "id": reaction.emoji_id,
            "animated": reaction.animated or None,
            "count": reaction.count,
            "image": (
                custom_emoji_url(reaction.emoji_id, animated=reaction.animated)
                if reaction.emoji_id
                else None
            ),
        }
    )


def system_text(message: Message) -> str | None:
    template = _SYSTEM_MESSAGES.get(message.type)
    if template is None:
        return None
    return template.format(name=message.author.name)


def render_message(parsed: ParsedMessage, resolver: EntityResolver) -> dict[str, Any]:
    message = parsed.message
    reply = None
    if message.reply is not None:
        reply = _clean(
            {
                "message_id": message.reply.message_id,
                "author": message.reply.author_name,
                "author_id": message.reply.author_id,
                "content": render_nodes(parsed.reply or (), resolver),
            }
        )
    fragment = {
        "id": message.id,
        "profile": parsed.profile,
        "timestamp": format_timestamp(message.timestamp),
        "edited_at": format_timestamp(message.edited_at),
        "type": message.type,
        "system": system_text(message),
        "webhook": message.is_webhook,
        "pinned": message.pinned,
        "large_emoji": parsed.content.large_emoji,
        "content": render_nodes(parsed.content.nodes, resolver),
        "reply": reply,
        "attachments": [_render_attachment(item) for item in message.attachments],
        "embeds": [_render_embed(item, resolver) for item in parsed.embeds],
        "reactions": [_render_reaction(item) for item in message.reactions],
    }
    return {k: v for k, v in fragment.items() if v not in (None, [])}
