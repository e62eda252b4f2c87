from __future__ import annotations

import asyncio

import httpx
import pytest

from chat_transcripts import generate_transcript, generate_transcript_async
from chat_transcripts.assemble import TranscriptContext, assemble
from chat_transcripts.errors import TranscriptError
from chat_transcripts.models import Author, Message
from chat_transcripts.resolve.images import ImageDownloader
from chat_transcripts.settings import TranscriptSettings

EMOJI_URL = "https://cdn.discordapp.com/emojis/456.png"


@pytest.mark.asyncio
async def test_bold_mention_emoji_message(make_message) -> None:
    calls: list[str] = []

    async def resolve_user(user_id: str):
        calls.append(user_id)
        return {"name": "Bob", "color": 0x00FF00}

    document = await generate_transcript_async(
        [
            make_message("1", "**bold** and <@123> with <:wave:456>"),
            make_message("2", "<@123> again <:wave:456>"),
        ],
        resolve_user=resolve_user,
        title="general",
    )

    fragment = document.messages[0]
    assert [node["type"] for node in fragment["content"]] == [
        "bold",
        "text",
        "mention",
        "text",
        "emoji",
    ]
    mention = fragment["content"][2]
    assert mention["name"] == "Bob"
    assert mention["display"] == "@Bob"
    assert mention["exists"] is True
    assert mention["color"] == "#00ff00"
    assert fragment["content"][4]["image"] == EMOJI_URL
    assert document.images[EMOJI_URL] == {"type": "passthrough", "url": EMOJI_URL}
    assert document.entities["user:123"]["name"] == "Bob"
    assert calls == ["123"]
    assert document.metadata["title"] == "general"
    assert document.metadata["footer"] == "Exported 2 messages."


@pytest.mark.asyncio
async def test_order_and_profile_keys(make_message) -> None:
    authors = [("a", "alice"), ("b", "bob"), ("c", "cara")]
    messages = [
        make_message(
            str(i),
            f"message {i}",
            author_id=authors[i % 3][0],
            username=authors[i % 3][1],
            timestamp=f"2024-01-01T12:{i:02d}:00Z",
        )
        for i in range(50)
    ]

    document = await generate_transcript_async(messages)

    assert [fragment["id"] for fragment in document.messages] == [str(i) for i in range(50)]
    assert [fragment["profile"] for fragment in document.messages[:6]] == [0, 1, 2, 0, 1, 2]
    assert [profile["name"] for profile in document.profiles] == ["alice", "bob", "cara"]
    assert [profile["key"] for profile in document.profiles] == [0, 1, 2]
    assert document.metadata["first_message"] == "2024-01-01T12:00:00Z"
    assert document.metadata["last_message"] == "2024-01-01T12:49:00Z"


@pytest.mark.asyncio
async def test_parse_modes_follow_message_origin(make_message) -> None:
    document = await generate_transcript_async(
        [
            make_message("1", "# Title"),
            make_message("2", "# Title", webhook_id="77"),
            make_message("3", "", embeds=[{"description": "# Title"}]),
        ]
    )

    plain, webhook, embedded = document.messages
    assert plain["content"] == [{"type": "text", "content": "# Title"}]
    assert webhook["webhook"] is True
    assert webhook["content"][0]["type"] == "heading"
    assert embedded["embeds"][0]["description"][0]["type"] == "heading"


@pytest.mark.asyncio
async def test_parse_mode_override(make_message) -> None:
    document = await generate_transcript_async(
        [make_message("1", "# Title")], message_parse_mode="extended"
    )

    assert document.messages[0]["content"][0]["type"] == "heading"


@pytest.mark.asyncio
async def test_large_emoji_flag(make_message) -> None:
    document = await generate_transcript_async(
        [make_message("1", "😀😀😀"), make_message("2", "😀" * 26)]
    )

    assert document.messages[0]["large_emoji"] is True
    assert document.messages[1]["large_emoji"] is False


@pytest.mark.asyncio
async def test_embed_strategy_with_failures(make_message) -> None:
    good = "https://cdn.example.com/good.png"
    bad = "https://cdn.example.com/bad.png"

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == good:
            return httpx.Response(200, content=b"img", headers={"Content-Type": "image/png"})
        return httpx.Response(500)

    messages = [
        make_message(
            "1",
            "pics",
            author={"id": "1", "username": "ann", "avatar_url": good},
            attachments=[
                {"id": "a", "url": good, "filename": "good.png"},
                {"id": "b", "url": bad, "filename": "bad.png"},
                {"id": "c", "url": "https://cdn.example.com/doc.pdf", "filename": "doc.pdf"},
            ],
        )
    ]

    document = await generate_transcript_async(
        messages,
        image_strategy="embed",
        downloader=ImageDownloader(transport=httpx.MockTransport(handler)),
    )

    assert document.images[good]["type"] == "inline"
    assert document.images[good]["url"].startswith("data:image/png;base64,")
    assert document.images[bad] == {"type": "failed", "url": bad}
    assert "https://cdn.example.com/doc.pdf" not in document.images
    attachments = document.messages[0]["attachments"]
    assert [item.get("image") for item in attachments] == [good, bad, None]
    assert document.profiles[0]["avatar_url"] == good


@pytest.mark.asyncio
async def test_assemble_closes_the_download_client(make_message, monkeypatch) -> None:
    created: list[httpx.AsyncClient] = []
    original_init = httpx.AsyncClient.__init__

    def counting_init(self, *args, **kwargs) -> None:
        created.append(self)
        original_init(self, *args, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "__init__", counting_init)
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            200, content=b"img", headers={"Content-Type": "image/png"}
        )
    )
    attachments = [
        {"id": str(i), "url": f"https://cdn.example.com/{i}.png", "filename": f"{i}.png"}
        for i in range(10)
    ]

    document = await generate_transcript_async(
        [make_message("1", "pics", attachments=attachments)],
        image_strategy="embed",
        downloader=ImageDownloader(transport=transport),
    )

    assert all(
        document.images[item["url"]]["type"] == "inline" for item in attachments
    )
    assert len(created) == 1
    assert created[0].is_closed


@pytest.mark.asyncio
async def test_missing_entities_and_reply_preview(make_message) -> None:
    document = await generate_transcript_async(
        [
            make_message(
                "2",
                "see <#55>",
                message_reference={"message_id": "1"},
                referenced_message={
                    "author": {"id": "9", "username": "zed"},
                    "content": "**earlier** <@&3>",
                },
            )
        ]
    )

    fragment = document.messages[0]
    assert fragment["content"][1]["name"] == "55"
    assert fragment["content"][1]["display"] == "#55"
    assert fragment["content"][1]["exists"] is False
    assert fragment["reply"]["author"] == "zed"
    assert fragment["reply"]["content"][0]["type"] == "bold"
    assert fragment["reply"]["content"][2]["display"] == "@3"
    assert len(document.profiles) == 1


@pytest.mark.asyncio
async def test_duplicate_ids_are_rejected(make_message) -> None:
    with pytest.raises(TranscriptError) as excinfo:
        await generate_transcript_async([make_message("1"), make_message("1")])

    assert excinfo.value.reason == "duplicate_message"
    assert excinfo.value.index == 1
    assert excinfo.value.message_id == "1"


@pytest.mark.asyncio
async def test_invalid_message_objects_are_rejected() -> None:
    broken = Message(id="1", author=Author(id="1", name="ann"), timestamp=None)  # type: ignore[arg-type]

    with pytest.raises(TranscriptError) as excinfo:
        await assemble([broken], TranscriptContext(settings=TranscriptSettings()))

    assert excinfo.value.reason == "invalid_timestamp"
    assert excinfo.value.index == 0


@pytest.mark.asyncio
async def test_cancelling_the_run_cancels_lookups(make_message) -> None:
    started = asyncio.Event()
    cancelled: list[str] = []

    async def resolve_user(user_id: str):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.append(user_id)
            raise

    context = TranscriptContext(settings=TranscriptSettings(), resolve_user=resolve_user)
    task = asyncio.ensure_future(assemble([make_message("1", "<@5>")], context))
    await started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    for _ in range(5):
        await asyncio.sleep(0)

    assert cancelled == ["5"]


def test_context_derive_keeps_original() -> None:
    context = TranscriptContext(title="one")

    derived = context.derive(title="two")
    tuned = context.with_settings(emoji_large_threshold=3)

    assert context.title == "one"
    assert derived.title == "two"
    assert tuned.settings.emoji_large_threshold == 3
    assert context.settings.emoji_large_threshold == 25


def test_sync_wrapper(make_message) -> None:
    document = generate_transcript([make_message("1", "hi")], footer_text="{number} total")

    assert document.metadata["footer"] == "1 total"
    assert document.to_data()["messages"][0]["content"] == [
        {"type": "text", "content": "hi"}
    ]
