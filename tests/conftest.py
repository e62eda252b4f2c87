from __future__ import annotations

from typing import Any, Callable

import pytest


def _message(
    message_id: str,
    content: str = "",
    *,
    author_id: str = "1",
    username: str = "ann",
    timestamp: str = "2024-01-01T12:00:00+00:00",
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": message_id,
        "author": {"id": author_id, "username": username},
        "content": content,
        "timestamp": timestamp,
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_message() -> Callable[..., dict[str, Any]]:
    return _message


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "CHAT_TRANSCRIPTS_IMAGE_STRATEGY",
        "CHAT_TRANSCRIPTS_MESSAGE_PARSE_MODE",
        "CHAT_TRANSCRIPTS_WEBHOOK_PARSE_MODE",
        "CHAT_TRANSCRIPTS_EMBED_PARSE_MODE",
        "CHAT_TRANSCRIPTS_EMOJI_LARGE_THRESHOLD",
        "CHAT_TRANSCRIPTS_IMAGE_JOBS",
        "CHAT_TRANSCRIPTS_IMAGE_MAX_KB",
        "CHAT_TRANSCRIPTS_IMAGE_QUALITY",
        "CHAT_TRANSCRIPTS_IMAGE_FORMAT",
        "CHAT_TRANSCRIPTS_FETCH_TIMEOUT",
        "CHAT_TRANSCRIPTS_FOOTER",
        "CHAT_TRANSCRIPTS_VERBOSE",
    ):
        monkeypatch.delenv(name, raising=False)
