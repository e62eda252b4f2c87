from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .errors import TranscriptError
from .markup.emoji import custom_emoji_url
from .markup.nodes import CustomEmoji, MarkupNode, Mention
from .markup.parser import parse, parse_message
from .models import Author, Message, format_timestamp, messages_from_payload
from .profiles import ProfileRegistry
from .render.fragments import ParsedEmbed, ParsedMessage, render_message
from .resolve.entities import EntityLookup, EntityResolver
from .resolve.images import (
    Compressor,
    ImageDownloader,
    ImagePipeline,
    ImageRef,
    ImageSrcResolver,
    PillowCompressor,
)
from .settings import TranscriptSettings, build_transcript_settings, format_footer

DEFAULT_TITLE = "Transcript"


def _log(message: str) -> None:
    from .runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


@dataclass(frozen=True)
class TranscriptContext:
    settings: TranscriptSettings = field(default_factory=TranscriptSettings)
    resolve_user: EntityLookup | None = None
    resolve_role: EntityLookup | None = None
    resolve_channel: EntityLookup | None = None
    resolve_image_src: ImageSrcResolver | None = None
    compressor: Compressor | None = None
    downloader: ImageDownloader | None = None
    title: str | None = None

    def derive(self, **changes: Any) -> "TranscriptContext":
        return replace(self, **changes)

    def with_settings(self, **overrides: Any) -> "TranscriptContext":
        return replace(
            self, settings=build_transcript_settings(overrides, base=self.settings)
        )

    def build_downloader(self) -> ImageDownloader:
        if self.downloader is not None:
            return self.downloader
        return ImageDownloader(
            timeout=self.settings.fetch_timeout,
            max_size_kb=self.settings.image_max_size_kb,
        )

    def build_compressor(self) -> Compressor | None:
        if self.compressor is not None:
            return self.compressor
        if self.settings.image_quality is None:
            return None
        return PillowCompressor(
            quality=self.settings.image_quality, format=self.settings.image_format
        )


@dataclass(frozen=True)
class Document:
    messages: tuple[dict[str, Any], ...]
    profiles: tuple[dict[str, Any], ...]
    images: dict[str, dict[str, Any]]
    entities: dict[str, dict[str, Any]]
    metadata: dict[str, Any]

    def to_data(self) -> dict[str, Any]:
        return {
            "metadata": dict(self.metadata),
            "profiles": list(self.profiles),
            "messages": list(self.messages),
            "images": dict(self.images),
            "entities": dict(self.entities),
        }


def validate_messages(messages: Iterable[Any]) -> list[Message]:
    prepared = messages_from_payload(messages)
    seen: set[str] = set()
    for index, message in enumerate(prepared):
        if not isinstance(message.id, str) or not message.id:
            raise TranscriptError("missing_id", index=index)
        if not isinstance(message.author, Author) or not message.author.id:
            raise TranscriptError("missing_author", message_id=message.id, index=index)
        if not isinstance(message.timestamp, datetime):
            raise TranscriptError(
                "invalid_timestamp", message_id=message.id, index=index
            )
        if not isinstance(message.content, str):
            raise TranscriptError(
                "malformed_message",
                message_id=message.id,
                index=index,
                detail="content must be a string",
            )
        if message.id in seen:
            raise TranscriptError(
                "duplicate_message", message_id=message.id, index=index
            )
        seen.add(message.id)
    return prepared


class DocumentAssembler:
    """Builds one Document; every run gets its own resolver, registry and pipeline."""

    def __init__(self, context: TranscriptContext):
        self.context = context
        settings = context.settings
        self.resolver = EntityResolver(
            resolve_user=context.resolve_user,
            resolve_role=context.resolve_role,
            resolve_channel=context.resolve_channel,
        )
        self.profiles = ProfileRegistry()
        self.images = ImagePipeline(
            settings.image_strategy,
            downloader=context.build_downloader(),
            compressor=context.build_compressor(),
            resolve_image_src=context.resolve_image_src,
            concurrency_limit=settings.concurrency_limit,
        )

    def _parse(self, raw: str | None, origin: str) -> tuple[MarkupNode, ...]:
        if not raw:
            return ()
        return tuple(parse(raw, self.context.settings.parse_mode_for(origin)))

    def _parse_embeds(self, message: Message) -> tuple[ParsedEmbed, ...]:
        parsed: list[ParsedEmbed] = []
        for embed in message.embeds:
            parsed.append(
                ParsedEmbed(
                    embed=embed,
                    title=self._parse(embed.title, "embed"),
                    description=self._parse(embed.description, "embed"),
                    fields=tuple(
                        (
                            self._parse(item.name, "embed"),
                            self._parse(item.value, "embed"),
                        )
                        for item in embed.fields
                    ),
                    footer=self._parse(
                        embed.footer.text if embed.footer else None, "embed"
                    ),
                )
            )
        return tuple(parsed)

    def parse_message(self, message: Message) -> ParsedMessage:
        settings = self.context.settings
        origin = "webhook" if message.is_webhook else "message"
        content = parse_message(
            message.content,
            settings.parse_mode_for(origin),
            emoji_large_threshold=settings.emoji_large_threshold,
        )
        reply = None
        if message.reply is not None and message.reply.content:
            reply = self._parse(message.reply.content, "message")
        profile = self.profiles.register(message.author.id, message.author)
        return ParsedMessage(
            message=message,
            profile=profile,
            content=content,
            reply=reply,
            embeds=self._parse_embeds(message),
        )

    def _collect_images(self, parsed: ParsedMessage) -> list[ImageRef]:
        message = parsed.message
        refs: list[ImageRef] = []
        if message.author.avatar_url:
            refs.append(ImageRef(message.author.avatar_url))
        for attachment in message.attachments:
            if attachment.kind == "image" and attachment.url:
                refs.append(
                    ImageRef(attachment.url, content_type=attachment.content_type)
                )
        for embed in message.embeds:
            urls = [
                embed.image.url if embed.image else None,
                embed.thumbnail.url if embed.thumbnail else None,
                embed.author.icon_url if embed.author else None,
                embed.footer.icon_url if embed.footer else None,
            ]
            refs.extend(ImageRef(url) for url in urls if url)
        for node in parsed.walk():
            if isinstance(node, CustomEmoji):
                url = custom_emoji_url(node.id, animated=node.animated)
                refs.append(ImageRef(url, is_emoji=True))
        for reaction in message.reactions:
            if reaction.emoji_id:
                refs.append(
                    ImageRef(
                        custom_emoji_url(reaction.emoji_id, animated=reaction.animated),
                        is_emoji=True,
                    )
                )
        return refs

    async def assemble(self, messages: Iterable[Any]) -> Document:
        prepared = validate_messages(messages)
        parsed: list[ParsedMessage] = []
        mention_keys: dict[tuple[str, str], None] = {}
        image_refs: dict[str, ImageRef] = {}

        for message in prepared:
            item = self.parse_message(message)
            parsed.append(item)
            for node in item.walk():
                if isinstance(node, Mention):
                    mention_keys.setdefault(node.key, None)
            for ref in self._collect_images(item):
                image_refs.setdefault(ref.identity, ref)

        _log(
            f"  resolving {len(mention_keys)} mention(s) and "
            f"{len(image_refs)} image(s) for {len(prepared)} message(s)"
        )
        jobs = [
            self.resolver.resolve(kind, entity_id) for kind, entity_id in mention_keys
        ]
        jobs.extend(self.images.resolve(ref) for ref in image_refs.values())
        try:
            await asyncio.gather(*jobs)
        except asyncio.CancelledError:
            self.resolver.cancel_pending()
            self.images.cancel_pending()
            raise
        finally:
            await self.images.aclose()

        fragments = tuple(render_message(item, self.resolver) for item in parsed)
        return Document(
            messages=fragments,
            profiles=tuple(self.profiles.export()),
            images={
                url: result.to_data() for url, result in self.images.results().items()
            },
            entities=self.resolver.snapshot(),
            metadata=self._metadata(prepared),
        )

    def _metadata(self, messages: list[Message]) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "title": self.context.title or DEFAULT_TITLE,
            "message_count": len(messages),
            "footer": format_footer(self.context.settings.footer_text, len(messages)),
        }
        if messages:
            metadata["first_message"] = format_timestamp(messages[0].timestamp)
            metadata["last_message"] = format_timestamp(messages[-1].timestamp)
        return metadata


async def assemble(messages: Iterable[Any], context: TranscriptContext) -> Document:
    return await DocumentAssembler(context).assemble(messages)
