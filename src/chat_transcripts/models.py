from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import TranscriptError

CDN_BASE = "https://cdn.discordapp.com"

_IMAGE_SUFFIXES = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".heic", ".heif"}
)
_VIDEO_SUFFIXES = frozenset(
    {".mp4", ".mov", ".webm", ".mkv", ".avi", ".mpeg", ".mpg", ".m4v"}
)
_AUDIO_SUFFIXES = frozenset({".wav", ".mp3", ".m4a", ".aac", ".ogg", ".flac", ".aiff"})


def parse_media_kind(*, filename: str, content_type: str) -> str:
    ctype = (content_type or "").lower().strip()
    if ctype.startswith("image/"):
        return "image"
    if ctype.startswith("video/"):
        return "video"
    if ctype.startswith("audio/"):
        return "audio"

    suffix = Path(filename.split("?", 1)[0]).suffix.lower()
    if suffix in _IMAGE_SUFFIXES:
        return "image"
    if suffix in _VIDEO_SUFFIXES:
        return "video"
    if suffix in _AUDIO_SUFFIXES:
        return "audio"
    return "file"


def format_color(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        if value <= 0:
            return None
        return f"#{value & 0xFFFFFF:06x}"
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        if cleaned.isdigit():
            return format_color(int(cleaned))
        return cleaned if cleaned.startswith("#") else f"#{cleaned}"
    return None


def avatar_url(user_id: str, avatar_hash: str | None, *, size: int = 64) -> str:
    if avatar_hash:
        ext = "gif" if avatar_hash.startswith("a_") else "png"
        return f"{CDN_BASE}/avatars/{user_id}/{avatar_hash}.{ext}?size={size}"
    try:
        index = (int(user_id) >> 22) % 6
    except ValueError:
        index = 0
    return f"{CDN_BASE}/embed/avatars/{index}.png"


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _str_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _list_field(
    data: Mapping[str, Any], key: str, *, message_id: str | None
) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TranscriptError(
            "malformed_message",
            message_id=message_id,
            detail=f"{key} must be a list",
        )
    return value


def _object_items(
    data: Mapping[str, Any], key: str, *, message_id: str | None
) -> list[Mapping[str, Any]]:
    items = _list_field(data, key, message_id=message_id)
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise TranscriptError(
                "malformed_message",
                message_id=message_id,
                detail=f"{key}[{index}] must be an object",
            )
    return items


@dataclass(frozen=True)
class Author:
    id: str
    name: str
    avatar_url: str | None = None
    color: str | None = None
    bot: bool = False
    verified: bool = False
    role_name: str | None = None
    role_icon: str | None = None

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], member: Mapping[str, Any] | None = None
    ) -> "Author":
        member = member or {}
        author_id = _str_or_none(data.get("id"))
        if author_id is None:
            raise ValueError("author id is required")
        name = "unknown"
        for key in ("nick", "global_name", "display_name", "username", "name"):
            value = member.get(key) if key in member else data.get(key)
            if isinstance(value, str) and value.strip():
                name = value.strip()
                break
        explicit_avatar = data.get("avatar_url")
        if isinstance(explicit_avatar, str) and explicit_avatar:
            avatar = explicit_avatar
        else:
            avatar = avatar_url(author_id, _str_or_none(data.get("avatar")))
        flags = _int_or_none(data.get("public_flags")) or 0
        return cls(
            id=author_id,
            name=name,
            avatar_url=avatar,
            color=format_color(member.get("color", data.get("color"))),
            bot=bool(data.get("bot")),
            verified=bool(data.get("verified")) or bool(flags & (1 << 16)),
            role_name=_str_or_none(member.get("role_name")),
            role_icon=_str_or_none(member.get("role_icon")),
        )


@dataclass(frozen=True)
class Attachment:
    id: str
    url: str
    filename: str = ""
    content_type: str | None = None
    size: int | None = None
    width: int | None = None
    height: int | None = None
    description: str | None = None
    spoiler: bool = False

    @property
    def kind(self) -> str:
        return parse_media_kind(
            filename=self.filename or self.url, content_type=self.content_type or ""
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Attachment":
        filename = str(data.get("filename") or "")
        return cls(
            id=str(data.get("id") or filename or data.get("url") or ""),
            url=str(data.get("url") or data.get("proxy_url") or ""),
            filename=filename,
            content_type=_str_or_none(data.get("content_type")),
            size=_int_or_none(data.get("size")),
            width=_int_or_none(data.get("width")),
            height=_int_or_none(data.get("height")),
            description=_str_or_none(data.get("description")),
            spoiler=filename.startswith("SPOILER_"),
        )


@dataclass(frozen=True)
class EmbedMedia:
    url: str
    width: int | None = None
    height: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "EmbedMedia | None":
        data = _mapping(data)
        url = data.get("url") or data.get("proxy_url")
        if not isinstance(url, str) or not url:
            return None
        return cls(
            url=url,
            width=_int_or_none(data.get("width")),
            height=_int_or_none(data.get("height")),
        )


@dataclass(frozen=True)
class EmbedAuthor:
    name: str
    url: str | None = None
    icon_url: str | None = None


@dataclass(frozen=True)
class EmbedFooter:
    text: str
    icon_url: str | None = None


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class Embed:
    title: str | None = None
    description: str | None = None
    url: str | None = None
    color: str | None = None
    timestamp: datetime | None = None
    author: EmbedAuthor | None = None
    footer: EmbedFooter | None = None
    image: EmbedMedia | None = None
    thumbnail: EmbedMedia | None = None
    fields: tuple[EmbedField, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Embed":
        author = _mapping(data.get("author"))
        footer = _mapping(data.get("footer"))
        fields = data.get("fields") if isinstance(data.get("fields"), list) else []
        return cls(
            title=_str_or_none(data.get("title")),
            description=_str_or_none(data.get("description")),
            url=_str_or_none(data.get("url")),
            color=format_color(data.get("color")),
            timestamp=parse_timestamp(data.get("timestamp")),
            author=(
                EmbedAuthor(
                    name=str(author["name"]),
                    url=_str_or_none(author.get("url")),
                    icon_url=_str_or_none(author.get("icon_url")),
                )
                if _str_or_none(author.get("name"))
                else None
            ),
            footer=(
                EmbedFooter(
                    text=str(footer["text"]),
                    icon_url=_str_or_none(footer.get("icon_url")),
                )
                if _str_or_none(footer.get("text"))
                else None
            ),
            image=EmbedMedia.from_dict(data.get("image")),
            thumbnail=EmbedMedia.from_dict(data.get("thumbnail")),
            fields=tuple(
                EmbedField(
                    name=str(field.get("name") or ""),
                    value=str(field.get("value") or ""),
                    inline=bool(field.get("inline")),
                )
                for field in fields
                if isinstance(field, Mapping)
            ),
        )


@dataclass(frozen=True)
class Reaction:
    emoji_name: str
    count: int = 1
    emoji_id: str | None = None
    animated: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reaction":
        emoji = _mapping(data.get("emoji"))
        return cls(
            emoji_name=str(emoji.get("name") or ""),
            count=_int_or_none(data.get("count")) or 1,
            emoji_id=_str_or_none(emoji.get("id")),
            animated=bool(emoji.get("animated")),
        )


@dataclass(frozen=True)
class MessageReply:
    message_id: str
    author_name: str | None = None
    author_id: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class Message:
    id: str
    author: Author
    timestamp: datetime
    content: str = ""
    attachments: tuple[Attachment, ...] = ()
    embeds: tuple[Embed, ...] = ()
    reactions: tuple[Reaction, ...] = ()
    reply: MessageReply | None = None
    webhook_id: str | None = None
    edited_at: datetime | None = None
    type: int = 0
    pinned: bool = False

    @property
    def is_webhook(self) -> bool:
        return self.webhook_id is not None

    @classmethod
    def from_dict(cls, data: Any) -> "Message":
        if not isinstance(data, Mapping):
            raise TranscriptError(
                "unsupported_type",
                detail=f"expected a mapping, got {type(data).__name__}",
            )
        message_id = _str_or_none(data.get("id"))
        if message_id is None:
            raise TranscriptError("missing_id")

        raw_author = data.get("author")
        if (
            not isinstance(raw_author, Mapping)
            or _str_or_none(raw_author.get("id")) is None
        ):
            raise TranscriptError("missing_author", message_id=message_id)
        author = Author.from_dict(raw_author, _mapping(data.get("member")))

        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            raise TranscriptError("invalid_timestamp", message_id=message_id)

        content = data.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise TranscriptError(
                "malformed_message",
                message_id=message_id,
                detail="content must be a string",
            )

        attachments = tuple(
            Attachment.from_dict(item)
            for item in _object_items(data, "attachments", message_id=message_id)
        )
        embeds = tuple(
            Embed.from_dict(item)
            for item in _object_items(data, "embeds", message_id=message_id)
        )
        reactions = tuple(
            Reaction.from_dict(item)
            for item in _object_items(data, "reactions", message_id=message_id)
        )

        return cls(
            id=message_id,
            author=author,
            timestamp=timestamp,
            content=content,
            attachments=attachments,
            embeds=embeds,
            reactions=reactions,
            reply=_reply_from_dict(data),
            webhook_id=_str_or_none(data.get("webhook_id")),
            edited_at=parse_timestamp(data.get("edited_timestamp")),
            type=_int_or_none(data.get("type")) or 0,
            pinned=bool(data.get("pinned")),
        )


def _reply_from_dict(data: Mapping[str, Any]) -> MessageReply | None:
    reference = _mapping(data.get("message_reference"))
    message_id = _str_or_none(reference.get("message_id"))
    if message_id is None:
        return None
    referenced = _mapping(data.get("referenced_message"))
    author = _mapping(referenced.get("author"))
    author_name = None
    for key in ("global_name", "display_name", "username"):
        value = author.get(key)
        if isinstance(value, str) and value.strip():
            author_name = value.strip()
            break
    content = referenced.get("content")
    return MessageReply(
        message_id=message_id,
        author_name=author_name,
        author_id=_str_or_none(author.get("id")),
        content=content if isinstance(content, str) and content else None,
    )


def messages_from_payload(items: Iterable[Any]) -> list[Message]:
    out: list[Message] = []
    for index, item in enumerate(items):
        if isinstance(item, Message):
            out.append(item)
            continue
        try:
            out.append(Message.from_dict(item))
        except TranscriptError as exc:
            raise exc.with_index(index) from None
    return out
