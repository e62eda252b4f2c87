from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from .models import Author, format_color


@dataclass(frozen=True)
class ProfileEntry:
    key: int
    author_id: str
    name: str
    avatar_url: str | None = None
    color: str | None = None
    role_name: str | None = None
    role_icon: str | None = None
    bot: bool = False
    verified: bool = False

    def to_data(self) -> dict[str, Any]:
        return asdict(self)


def _entry_from(
    key: int, author_id: str, data: Author | Mapping[str, Any]
) -> ProfileEntry:
    if isinstance(data, Author):
        return ProfileEntry(
            key=key,
            author_id=author_id,
            name=data.name,
            avatar_url=data.avatar_url,
            color=data.color,
            role_name=data.role_name,
            role_icon=data.role_icon,
            bot=data.bot,
            verified=data.verified,
        )
    name = data.get("name")
    return ProfileEntry(
        key=key,
        author_id=author_id,
        name=name if isinstance(name, str) and name else author_id,
        avatar_url=data.get("avatar_url"),
        color=format_color(data.get("color")),
        role_name=data.get("role_name"),
        role_icon=data.get("role_icon"),
        bot=bool(data.get("bot")),
        verified=bool(data.get("verified")),
    )


class ProfileRegistry:
    """Deduplicated author table; keys are assigned 0, 1, 2... in first-seen order."""

    def __init__(self) -> None:
        self._keys: dict[str, int] = {}
        self._entries: list[ProfileEntry] = []

    def register(self, author_id: str, data: Author | Mapping[str, Any]) -> int:
        author_id = str(author_id)
        key = self._keys.get(author_id)
        if key is not None:
            return key
        key = len(self._entries)
        self._keys[author_id] = key
        self._entries.append(_entry_from(key, author_id, data))
        return key

    def key_for(self, author_id: str) -> int | None:
        return self._keys.get(str(author_id))

    def entry(self, key: int) -> ProfileEntry:
        return self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def export(self) -> list[dict[str, Any]]:
        return [entry.to_data() for entry in self._entries]
