from __future__ import annotations

import asyncio
import io

import httpx
import pytest

from chat_transcripts.resolve.images import (
    Failed,
    ImageDownloader,
    ImageFetchError,
    ImagePipeline,
    ImageRef,
    InlineData,
    PassthroughURL,
    PillowCompressor,
)


def _png_bytes(size: tuple[int, int] = (4, 4)) -> bytes:
    from PIL import Image

    output = io.BytesIO()
    Image.new("RGBA", size, (255, 0, 0, 128)).save(output, format="PNG")
    return output.getvalue()


def _transport(routes: dict[str, httpx.Response], hits: list[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(str(request.url))
        return routes.get(str(request.url), httpx.Response(404))

    return httpx.MockTransport(handler)


class _NoNetworkDownloader:
    async def fetch(self, ref: ImageRef):
        raise AssertionError(f"unexpected fetch of {ref.url}")


@pytest.mark.asyncio
async def test_passthrough_never_fetches() -> None:
    pipeline = ImagePipeline("passthrough", downloader=_NoNetworkDownloader())

    result = await pipeline.resolve(ImageRef("https://cdn.example.com/a.png"))

    assert result == PassthroughURL("https://cdn.example.com/a.png")
    assert pipeline.fetch_count == 0


@pytest.mark.asyncio
async def test_embed_inlines_bytes_once() -> None:
    hits: list[str] = []
    url = "https://cdn.example.com/a.png"
    downloader = ImageDownloader(
        transport=_transport(
            {url: httpx.Response(200, content=b"png-bytes", headers={"Content-Type": "image/png"})},
            hits,
        )
    )
    pipeline = ImagePipeline("embed", downloader=downloader)

    first, second = await asyncio.gather(
        pipeline.resolve(ImageRef(url)), pipeline.resolve(ImageRef(url))
    )
    third = await pipeline.resolve(ImageRef(url))

    assert isinstance(first, InlineData)
    assert first is second is third
    assert first.mime_type == "image/png"
    assert first.data_uri == "data:image/png;base64,cG5nLWJ5dGVz"
    assert hits == [url]
    assert pipeline.results() == {url: first}


@pytest.mark.asyncio
async def test_embed_failures_degrade_to_failed() -> None:
    hits: list[str] = []
    big = "https://cdn.example.com/big.png"
    downloader = ImageDownloader(
        max_size_kb=1,
        transport=_transport({big: httpx.Response(200, content=b"x" * 2048)}, hits),
    )
    pipeline = ImagePipeline("embed", downloader=downloader)

    missing = await pipeline.resolve(ImageRef("https://cdn.example.com/missing.png"))
    oversized = await pipeline.resolve(ImageRef(big))

    assert missing == Failed("https://cdn.example.com/missing.png")
    assert oversized == Failed(big)
    assert oversized.to_data() == {"type": "failed", "url": big}


@pytest.mark.asyncio
async def test_downloader_reports_http_errors() -> None:
    downloader = ImageDownloader(transport=_transport({}, []))

    with pytest.raises(ImageFetchError) as excinfo:
        await downloader.fetch(ImageRef("https://cdn.example.com/nope.png"))

    assert excinfo.value.url == "https://cdn.example.com/nope.png"


@pytest.mark.asyncio
async def test_custom_strategy_uses_callback() -> None:
    seen: list[str] = []

    async def resolve_image_src(ref: ImageRef) -> str:
        seen.append(ref.url)
        if "bad" in ref.url:
            raise RuntimeError("no upload")
        return ref.url.replace("cdn.example.com", "mirror.example.org")

    pipeline = ImagePipeline("custom", resolve_image_src=resolve_image_src)

    good = await pipeline.resolve(ImageRef("https://cdn.example.com/a.png"))
    bad = await pipeline.resolve(ImageRef("https://cdn.example.com/bad.png"))
    await pipeline.resolve(ImageRef("https://cdn.example.com/a.png"))

    assert good == PassthroughURL("https://mirror.example.org/a.png")
    assert bad == Failed("https://cdn.example.com/bad.png")
    assert seen == ["https://cdn.example.com/a.png", "https://cdn.example.com/bad.png"]


def test_invalid_strategy_configuration() -> None:
    with pytest.raises(ValueError):
        ImagePipeline("inline")
    with pytest.raises(ValueError):
        ImagePipeline("custom")


@pytest.mark.asyncio
async def test_embed_respects_concurrency_limit() -> None:
    active = 0
    peak = 0

    class _SlowDownloader:
        async def fetch(self, ref: ImageRef):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return b"data", "image/gif"

    pipeline = ImagePipeline("embed", downloader=_SlowDownloader(), concurrency_limit=2)

    results = await asyncio.gather(
        *(pipeline.resolve(ImageRef(f"https://cdn.example.com/{i}.gif")) for i in range(6))
    )

    assert peak == 2
    assert pipeline.fetch_count == 6
    assert all(isinstance(result, InlineData) for result in results)


@pytest.mark.asyncio
async def test_compressor_reencodes_with_pillow() -> None:
    compressor = PillowCompressor(quality=50, format="jpg")

    data, mime_type = await compressor(_png_bytes(), "image/png")

    assert mime_type == "image/jpeg"
    assert data[:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_compression_failure_is_failed() -> None:
    class _StaticDownloader:
        async def fetch(self, ref: ImageRef):
            return b"not an image", "image/png"

    pipeline = ImagePipeline(
        "embed", downloader=_StaticDownloader(), compressor=PillowCompressor()
    )

    result = await pipeline.resolve(ImageRef("https://cdn.example.com/broken.png"))

    assert result == Failed("https://cdn.example.com/broken.png")


def _count_clients(monkeypatch) -> list[httpx.AsyncClient]:
    created: list[httpx.AsyncClient] = []
    original_init = httpx.AsyncClient.__init__

    def counting_init(self, *args, **kwargs) -> None:
        created.append(self)
        original_init(self, *args, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "__init__", counting_init)
    return created


@pytest.mark.asyncio
async def test_embed_run_shares_one_client(monkeypatch) -> None:
    created = _count_clients(monkeypatch)
    urls = [f"https://cdn.example.com/{i}.png" for i in range(10)]
    routes = {
        url: httpx.Response(200, content=b"img", headers={"Content-Type": "image/png"})
        for url in urls
    }
    pipeline = ImagePipeline(
        "embed", downloader=ImageDownloader(transport=_transport(routes, []))
    )

    results = await asyncio.gather(*(pipeline.resolve(ImageRef(url)) for url in urls))
    await pipeline.aclose()

    assert all(isinstance(result, InlineData) for result in results)
    assert len(created) == 1
    assert created[0].is_closed


@pytest.mark.asyncio
async def test_closed_downloader_reopens(monkeypatch) -> None:
    created = _count_clients(monkeypatch)
    url = "https://cdn.example.com/a.png"
    downloader = ImageDownloader(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"img")
        )
    )

    await downloader.fetch(ImageRef(url))
    await downloader.aclose()
    await downloader.aclose()
    data, _ = await downloader.fetch(ImageRef(url))

    assert data == b"img"
    assert len(created) == 2


@pytest.mark.asyncio
async def test_size_limit_stops_reading_the_body() -> None:
    pulled: list[int] = []

    async def body():
        for index in range(100):
            pulled.append(index)
            yield b"x" * 1024

    url = "https://cdn.example.com/huge.png"
    downloader = ImageDownloader(
        max_size_kb=2,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body())),
    )

    with pytest.raises(ImageFetchError) as excinfo:
        await downloader.fetch(ImageRef(url))
    await downloader.aclose()

    assert excinfo.value.reason == "larger than 2 KB"
    assert len(pulled) <= 3
