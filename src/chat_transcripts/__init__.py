from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .assemble import Document
    from .resolve.entities import EntityLookup
    from .resolve.images import Compressor, ImageDownloader, ImageSrcResolver
    from .settings import TranscriptSettings


async def generate_transcript_async(
    messages: Iterable[Any],
    *,
    resolve_user: EntityLookup | None = None,
    resolve_role: EntityLookup | None = None,
    resolve_channel: EntityLookup | None = None,
    resolve_image_src: ImageSrcResolver | None = None,
    compressor: Compressor | None = None,
    downloader: ImageDownloader | None = None,
    title: str | None = None,
    settings: TranscriptSettings | None = None,
    **overrides: Any,
) -> Document:
    from .assemble import TranscriptContext, assemble
    from .settings import build_transcript_settings

    base = settings if settings is not None else build_transcript_settings()
    context = TranscriptContext(
        settings=build_transcript_settings(overrides, base=base),
        resolve_user=resolve_user,
        resolve_role=resolve_role,
        resolve_channel=resolve_channel,
        resolve_image_src=resolve_image_src,
        compressor=compressor,
        downloader=downloader,
        title=title,
    )
    return await assemble(messages, context)


def generate_transcript(messages: Iterable[Any], **kwargs: Any) -> Document:
    import asyncio

    return asyncio.run(generate_transcript_async(messages, **kwargs))


def render_transcript(
    messages: Iterable[Any], *, format: str = "json", **kwargs: Any
) -> str:
    from .render.document import dump_document

    return dump_document(generate_transcript(messages, **kwargs), format)
