from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from chat_transcripts.resolve.entities import EntityResolver
from chat_transcripts.runtime import reset_verbose_logging, set_verbose_logging


@pytest.mark.asyncio
async def test_lookups_are_memoized() -> None:
    calls: list[str] = []

    async def resolve_user(user_id: str):
        calls.append(user_id)
        return {"name": f"user-{user_id}", "avatar_url": "https://cdn.example.com/a.png"}

    resolver = EntityResolver(resolve_user=resolve_user)

    first = await resolver.resolve("user", "1")
    second = await resolver.resolve("user", "1")
    await resolver.resolve("user", "2")

    assert first is second
    assert first.display == "@user-1"
    assert first.exists is True
    assert calls == ["1", "2"]


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_lookup() -> None:
    calls: list[str] = []
    release = asyncio.Event()

    async def resolve_role(role_id: str):
        calls.append(role_id)
        await release.wait()
        return SimpleNamespace(name="mods", color=0x3498DB)

    resolver = EntityResolver(resolve_role=resolve_role)
    pending = [asyncio.ensure_future(resolver.resolve("role", "5")) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*pending)

    assert calls == ["5"]
    assert {entity.name for entity in results} == {"mods"}
    assert results[0].color == "#3498db"


@pytest.mark.asyncio
async def test_failures_become_missing_entities(capsys) -> None:
    async def resolve_user(user_id: str):
        raise RuntimeError("api down")

    async def resolve_channel(channel_id: str):
        return None

    resolver = EntityResolver(resolve_user=resolve_user, resolve_channel=resolve_channel)
    token = set_verbose_logging(True)
    try:
        user = await resolver.resolve("user", "123")
        channel = await resolver.resolve("channel", "9")
        role = await resolver.resolve("role", "4")
    finally:
        reset_verbose_logging(token)

    assert (user.exists, user.display) == (False, "@123")
    assert (channel.exists, channel.display) == (False, "#9")
    assert (role.exists, role.display) == (False, "@4")
    assert "user lookup failed for 123" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_everyone_resolves_locally() -> None:
    resolver = EntityResolver()

    entity = await resolver.resolve("everyone", "here")

    assert entity.exists is True
    assert entity.display == "@here"
    assert resolver.snapshot() == {
        "everyone:here": {
            "kind": "everyone",
            "id": "here",
            "name": "here",
            "exists": True,
            "display": "@here",
        }
    }
