from __future__ import annotations

import asyncio
import base64
import io
import mimetypes
import sys
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

import httpx

IMAGE_STRATEGIES = frozenset({"passthrough", "embed", "custom"})
DEFAULT_CONCURRENCY_LIMIT = 4

_DOWNLOAD_HEADERS = {
    "User-Agent": "chat-transcripts/images",
    "Accept": "image/*,application/octet-stream",
}
_PILLOW_FORMATS = {"webp": "image/webp", "jpeg": "image/jpeg", "png": "image/png"}


def _log(message: str) -> None:
    from ..runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


class ImageFetchError(Exception):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url}")


@dataclass(frozen=True)
class ImageRef:
    url: str
    content_type: str | None = None
    is_emoji: bool = False

    @property
    def identity(self) -> str:
        return self.url


@dataclass(frozen=True)
class PassthroughURL:
    url: str
    type = "passthrough"

    def to_data(self) -> dict[str, Any]:
        return {"type": self.type, "url": self.url}


@dataclass(frozen=True)
class InlineData:
    mime_type: str
    data: bytes
    type = "inline"

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    def to_data(self) -> dict[str, Any]:
        return {"type": self.type, "mime_type": self.mime_type, "url": self.data_uri}


@dataclass(frozen=True)
class Failed:
    original_url: str
    type = "failed"

    def to_data(self) -> dict[str, Any]:
        return {"type": self.type, "url": self.original_url}


ImageResult = Union[PassthroughURL, InlineData, Failed]
ImageSrcResolver = Callable[[ImageRef], Awaitable[str]]
Compressor = Callable[[bytes, str], Awaitable[tuple[bytes, str]]]


def _guess_mime_type(ref: ImageRef, header: str | None) -> str:
    ctype = (header or "").split(";", 1)[0].strip().lower()
    if ctype.startswith("image/"):
        return ctype
    if ref.content_type and ref.content_type.lower().startswith("image/"):
        return ref.content_type.lower()
    guessed, _ = mimetypes.guess_type(ref.url.split("?", 1)[0])
    if guessed and guessed.startswith("image/"):
        return guessed
    return "application/octet-stream"


class ImageDownloader:
    """Fetches image bytes over one shared httpx client.

    The client is opened on first use and closed by ``aclose()``; a closed
    downloader opens a fresh client the next time it fetches.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_size_kb: int | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.max_size_kb = max_size_kb
        self.headers = {**_DOWNLOAD_HEADERS, **dict(headers or {})}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def fetch(self, ref: ImageRef) -> tuple[bytes, str]:
        limit = self.max_size_kb * 1024 if self.max_size_kb is not None else None
        client = self._get_client()
        try:
            async with client.stream("GET", ref.url) as response:
                response.raise_for_status()
                declared = response.headers.get("Content-Length", "")
                if limit is not None and declared.isdigit() and int(declared) > limit:
                    raise ImageFetchError(ref.url, f"larger than {self.max_size_kb} KB")
                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if limit is not None and received > limit:
                        raise ImageFetchError(
                            ref.url, f"larger than {self.max_size_kb} KB"
                        )
                    chunks.append(chunk)
                content_type = response.headers.get("Content-Type")
        except httpx.HTTPError as exc:
            raise ImageFetchError(ref.url, type(exc).__name__) from exc
        content = b"".join(chunks)
        if not content:
            raise ImageFetchError(ref.url, "empty response")
        return content, _guess_mime_type(ref, content_type)


class PillowCompressor:
    """Re-encodes still images with Pillow; animated images pass through."""

    def __init__(self, *, quality: int = 80, format: str = "webp"):
        fmt = format.lower()
        if fmt == "jpg":
            fmt = "jpeg"
        if fmt not in _PILLOW_FORMATS:
            raise ValueError(f"unsupported image format: {format!r}")
        self.quality = max(1, min(int(quality), 100))
        self.format = fmt

    def _encode(self, data: bytes, mime_type: str) -> tuple[bytes, str]:
        from PIL import Image

        with Image.open(io.BytesIO(data)) as image:
            if getattr(image, "is_animated", False):
                return data, mime_type
            if self.format == "jpeg" and image.mode not in {"RGB", "L"}:
                image = image.convert("RGB")
            elif self.format != "jpeg" and image.mode not in {"RGB", "RGBA"}:
                image = image.convert("RGBA")
            output = io.BytesIO()
            image.save(output, format=self.format.upper(), quality=self.quality)
        return output.getvalue(), _PILLOW_FORMATS[self.format]

    async def __call__(self, data: bytes, mime_type: str) -> tuple[bytes, str]:
        return await asyncio.to_thread(self._encode, data, mime_type)


class ImagePipeline:
    """Run-scoped image resolution with per-ref caching.

    ``embed`` fetches are limited to ``concurrency_limit`` at a time.
    Failures of any strategy degrade to ``Failed`` and are cached like
    any other result.
    """

    def __init__(
        self,
        strategy: str = "passthrough",
        *,
        downloader: ImageDownloader | None = None,
        compressor: Compressor | None = None,
        resolve_image_src: ImageSrcResolver | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    ):
        if strategy not in IMAGE_STRATEGIES:
            raise ValueError(f"unknown image strategy: {strategy!r}")
        if strategy == "custom" and resolve_image_src is None:
            raise ValueError("the custom image strategy requires resolve_image_src")
        self.strategy = strategy
        self.downloader = downloader or ImageDownloader()
        self.compressor = compressor
        self.resolve_image_src = resolve_image_src
        self._semaphore = asyncio.Semaphore(max(1, int(concurrency_limit)))
        self._cache: dict[tuple[str, str], ImageResult] = {}
        self._pending: dict[tuple[str, str], asyncio.Task[ImageResult]] = {}
        self.fetch_count = 0

    async def resolve(self, ref: ImageRef, strategy: str | None = None) -> ImageResult:
        strategy = strategy or self.strategy
        if strategy not in IMAGE_STRATEGIES:
            raise ValueError(f"unknown image strategy: {strategy!r}")
        key = (strategy, ref.identity)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        if strategy == "passthrough":
            result = PassthroughURL(ref.url)
            self._cache[key] = result
            return result
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve_uncached(ref, strategy))
            self._pending[key] = task
        return await asyncio.shield(task)

    async def _resolve_uncached(self, ref: ImageRef, strategy: str) -> ImageResult:
        key = (strategy, ref.identity)
        try:
            if strategy == "custom":
                result = await self._custom(ref)
            else:
                result = await self._embed(ref)
            self._cache[key] = result
            return result
        finally:
            self._pending.pop(key, None)

    async def _custom(self, ref: ImageRef) -> ImageResult:
        if self.resolve_image_src is None:
            return Failed(ref.url)
        try:
            src = await self.resolve_image_src(ref)
        except Exception as exc:
            _log(f"  image source callback failed for {ref.url}: {type(exc).__name__}")
            return Failed(ref.url)
        if not isinstance(src, str) or not src:
            return Failed(ref.url)
        return PassthroughURL(src)

    async def _embed(self, ref: ImageRef) -> ImageResult:
        async with self._semaphore:
            self.fetch_count += 1
            try:
                data, mime_type = await self.downloader.fetch(ref)
            except Exception as exc:
                _log(f"  image fetch failed: {exc}")
                return Failed(ref.url)
            if self.compressor is not None:
                try:
                    data, mime_type = await self.compressor(data, mime_type)
                except Exception as exc:
                    _log(
                        f"  image compression failed for {ref.url}: "
                        f"{type(exc).__name__}: {exc}"
                    )
                    return Failed(ref.url)
        return InlineData(mime_type=mime_type, data=data)

    def get(self, url: str) -> ImageResult | None:
        result = self._cache.get((self.strategy, url))
        if result is not None:
            return result
        for (_, identity), cached in self._cache.items():
            if identity == url:
                return cached
        return None

    def cancel_pending(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

    async def aclose(self) -> None:
        close = getattr(self.downloader, "aclose", None)
        if close is not None:
            await close()

    def results(self) -> dict[str, ImageResult]:
        out: dict[str, ImageResult] = {}
        for (strategy, identity), result in self._cache.items():
            if strategy == self.strategy or identity not in out:
                out[identity] = result
        return out
