from __future__ import annotations

import re

from ..models import CDN_BASE

# emoji-presentation code points render as emoji on their own
_EMOJI_PRESENTATION = (
    "[\u231a\u231b\u23e9-\u23ec\u23f0\u23f3\u25fd\u25fe\u2614\u2615"
    "\u2648-\u2653\u267f\u2693\u26a1\u26aa\u26ab\u26bd\u26be\u26c4\u26c5"
    "\u26ce\u26d4\u26ea\u26f2\u26f3\u26f5\u26fa\u26fd\u2705\u270a\u270b"
    "\u2728\u274c\u274e\u2753-\u2755\u2757\u2795-\u2797\u27b0\u27bf"
    "\u2b1b\u2b1c\u2b50\u2b55"
    "\U0001f004\U0001f0cf\U0001f18e\U0001f191-\U0001f19a\U0001f200-\U0001f2ff"
    "\U0001f300-\U0001f64f\U0001f680-\U0001f6ff\U0001f7e0-\U0001f7f0"
    "\U0001f900-\U0001faff]"
)
# text-presentation code points need a trailing VS16 or skin tone
_EMOJI_TEXT_DEFAULT = (
    "[\u00a9\u00ae\u203c\u2049\u2122\u2139\u2194-\u2199\u21a9\u21aa"
    "\u2328\u23cf\u23ed-\u23ef\u23f1\u23f2\u23f8-\u23fa\u24c2\u25aa\u25ab"
    "\u25b6\u25c0\u25fb\u25fc\u2600-\u27bf\u2934\u2935\u2b05-\u2b07"
    "\u3030\u303d\u3297\u3299\U0001f170\U0001f171\U0001f17e\U0001f17f]"
)
_EMOJI_SKIN_TONE = "[\U0001f3fb-\U0001f3ff]"
_EMOJI_BASE = (
    f"(?:{_EMOJI_PRESENTATION}|{_EMOJI_TEXT_DEFAULT}(?=\ufe0f|{_EMOJI_SKIN_TONE}))"
)
_EMOJI_MODIFIER = f"(?:\ufe0f|{_EMOJI_SKIN_TONE})?[\U000e0020-\U000e007f]*"
_EMOJI_RE = re.compile(
    "[\U0001f1e6-\U0001f1ff]{2}"
    "|[0-9#*]\ufe0f?\u20e3"
    f"|{_EMOJI_BASE}{_EMOJI_MODIFIER}(?:\u200d{_EMOJI_BASE}{_EMOJI_MODIFIER})*"
)


def find_unicode_emoji(text: str) -> list[str]:
    return [match.group(0) for match in _EMOJI_RE.finditer(text)]


def count_emoji_only(text: str) -> int | None:
    """Number of emoji in ``text`` if it holds nothing but emoji and whitespace."""
    matches = find_unicode_emoji(text)
    remainder = _EMOJI_RE.sub("", text)
    if remainder.strip():
        return None
    return len(matches)


def custom_emoji_url(emoji_id: str, *, animated: bool = False) -> str:
    ext = "gif" if animated else "png"
    return f"{CDN_BASE}/emojis/{emoji_id}.{ext}"
