from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from typing import Any

from .markup.parser import DEFAULT_EMOJI_LARGE_THRESHOLD, PARSE_MODES
from .resolve.images import DEFAULT_CONCURRENCY_LIMIT, IMAGE_STRATEGIES
from .runtime import clamp_image_fetch_jobs, get_image_fetch_jobs

_VALID_IMAGE_FORMATS = frozenset({"webp", "jpeg", "png"})
DEFAULT_FOOTER = "Exported {number} message{s}."


@lru_cache(maxsize=1)
def _load_dotenv() -> None:
    try:
        from dotenv import find_dotenv, load_dotenv

        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)
    except Exception:
        return


@dataclass(frozen=True)
class TranscriptSettings:
    image_strategy: str = "passthrough"
    message_parse_mode: str = "normal"
    webhook_parse_mode: str = "extended"
    embed_parse_mode: str = "extended"
    emoji_large_threshold: int = DEFAULT_EMOJI_LARGE_THRESHOLD
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    image_max_size_kb: int | None = None
    image_quality: int | None = None
    image_format: str = "webp"
    fetch_timeout: float = 30.0
    footer_text: str = DEFAULT_FOOTER

    def parse_mode_for(self, origin: str) -> str:
        if origin == "webhook":
            return self.webhook_parse_mode
        if origin == "embed":
            return self.embed_parse_mode
        return self.message_parse_mode


def _parse_choice(value: str, *, valid: frozenset[str], default: str) -> str:
    cleaned = value.strip().lower()
    if cleaned == "jpg":
        cleaned = "jpeg"
    if cleaned in valid:
        return cleaned
    return default


def _parse_optional_int(value: str) -> int | None:
    cleaned = value.strip()
    if not cleaned:
        return None
    try:
        parsed = int(cleaned)
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def _parse_float(value: str, *, default: float) -> float:
    cleaned = value.strip()
    if not cleaned:
        return default
    try:
        return max(1.0, float(cleaned))
    except ValueError:
        return default


def _settings_from_env() -> TranscriptSettings:
    _load_dotenv()
    defaults = TranscriptSettings()

    image_strategy = _parse_choice(
        os.environ.get("CHAT_TRANSCRIPTS_IMAGE_STRATEGY", ""),
        valid=IMAGE_STRATEGIES,
        default=defaults.image_strategy,
    )
    if image_strategy == "custom":
        # custom needs a resolve_image_src callback
        image_strategy = defaults.image_strategy

    message_parse_mode = _parse_choice(
        os.environ.get("CHAT_TRANSCRIPTS_MESSAGE_PARSE_MODE", ""),
        valid=PARSE_MODES,
        default=defaults.message_parse_mode,
    )
    webhook_parse_mode = _parse_choice(
        os.environ.get("CHAT_TRANSCRIPTS_WEBHOOK_PARSE_MODE", ""),
        valid=PARSE_MODES,
        default=defaults.webhook_parse_mode,
    )
    embed_parse_mode = _parse_choice(
        os.environ.get("CHAT_TRANSCRIPTS_EMBED_PARSE_MODE", ""),
        valid=PARSE_MODES,
        default=defaults.embed_parse_mode,
    )

    threshold = _parse_optional_int(
        os.environ.get("CHAT_TRANSCRIPTS_EMOJI_LARGE_THRESHOLD", "")
    )
    quality = _parse_optional_int(os.environ.get("CHAT_TRANSCRIPTS_IMAGE_QUALITY", ""))
    max_size = _parse_optional_int(os.environ.get("CHAT_TRANSCRIPTS_IMAGE_MAX_KB", ""))
    footer = os.environ.get("CHAT_TRANSCRIPTS_FOOTER")

    return TranscriptSettings(
        image_strategy=image_strategy,
        message_parse_mode=message_parse_mode,
        webhook_parse_mode=webhook_parse_mode,
        embed_parse_mode=embed_parse_mode,
        emoji_large_threshold=(
            threshold if threshold is not None else defaults.emoji_large_threshold
        ),
        concurrency_limit=get_image_fetch_jobs(),
        image_max_size_kb=max_size if max_size else None,
        image_quality=min(quality, 100) if quality else None,
        image_format=_parse_choice(
            os.environ.get("CHAT_TRANSCRIPTS_IMAGE_FORMAT", ""),
            valid=_VALID_IMAGE_FORMATS,
            default=defaults.image_format,
        ),
        fetch_timeout=_parse_float(
            os.environ.get("CHAT_TRANSCRIPTS_FETCH_TIMEOUT", ""),
            default=defaults.fetch_timeout,
        ),
        footer_text=footer if footer is not None else defaults.footer_text,
    )


def _validate_override(name: str, value: Any) -> Any:
    if name == "image_strategy":
        if value not in IMAGE_STRATEGIES:
            raise ValueError(
                f"image_strategy must be one of {sorted(IMAGE_STRATEGIES)}"
            )
        return value
    if name.endswith("_parse_mode"):
        if value not in PARSE_MODES:
            raise ValueError(f"{name} must be one of {sorted(PARSE_MODES)}")
        return value
    if name == "emoji_large_threshold":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError("emoji_large_threshold must be a non-negative integer")
        return value
    if name == "concurrency_limit":
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError("concurrency_limit must be a positive integer")
        return clamp_image_fetch_jobs(value)
    if name in {"image_max_size_kb", "image_quality"}:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"{name} must be a positive integer or None")
        return min(value, 100) if name == "image_quality" else value
    if name == "image_format":
        fmt = str(value).lower()
        fmt = "jpeg" if fmt == "jpg" else fmt
        if fmt not in _VALID_IMAGE_FORMATS:
            raise ValueError(
                f"image_format must be one of {sorted(_VALID_IMAGE_FORMATS)}"
            )
        return fmt
    if name == "fetch_timeout":
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ValueError("fetch_timeout must be a number") from None
        if timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        return timeout
    if name == "footer_text":
        return str(value)
    return value


def build_transcript_settings(
    overrides: dict[str, Any] | None = None,
    *,
    base: TranscriptSettings | None = None,
) -> TranscriptSettings:
    settings = base if base is not None else _settings_from_env()
    if not overrides:
        return settings
    known = {field.name for field in fields(TranscriptSettings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"unknown transcript settings: {', '.join(unknown)}")
    changes = {
        name: _validate_override(name, value) for name, value in overrides.items()
    }
    return replace(settings, **changes)


def format_footer(template: str, message_count: int) -> str:
    return template.replace("{number}", str(message_count)).replace(
        "{s}", "" if message_count == 1 else "s"
    )
