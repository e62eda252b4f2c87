from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass

from .emoji import count_emoji_only
from .nodes import (
    BlockQuote,
    Bold,
    CodeBlock,
    CustomEmoji,
    Heading,
    InlineCode,
    Italic,
    Link,
    MarkupNode,
    Mention,
    Spoiler,
    Strikethrough,
    Text,
    Timestamp,
    Underline,
)

PARSE_MODES = frozenset({"normal", "extended"})
DEFAULT_EMOJI_LARGE_THRESHOLD = 25

_USER_MENTION_RE = re.compile(r"<@!?(\d+)>")
_ROLE_MENTION_RE = re.compile(r"<@&(\d+)>")
_CHANNEL_MENTION_RE = re.compile(r"<#(\d+)>")
_EVERYONE_RE = re.compile(r"@(everyone|here)\b")
_CUSTOM_EMOJI_RE = re.compile(r"<(a?):(\w{2,32}):(\d+)>")
_TIMESTAMP_RE = re.compile(r"<t:(-?\d{1,13})(?::([tTdDfFR]))?>")
_AUTOLINK_RE = re.compile(r"<(https?://[^\s<>]+)>")
_URL_RE = re.compile(r"https?://[^\s<]*[^<.,:;\"'\)\]\s]")
_MASKED_LINK_RE = re.compile(
    r"\[((?:\\.|[^\[\]\\])+)\]\(\s*<?(https?://[^\s()<>]+)>?(?:\s+\"[^\"]*\")?\s*\)"
)
_HEADING_RE = re.compile(r"(#{1,3}) +(\S[^\n]*)")
_CODE_LANGUAGE_RE = re.compile(r"([a-zA-Z0-9_+\-.#]+)\n")


@dataclass(frozen=True)
class _Rules:
    headings: bool
    masked_links: bool
    max_depth: int


_MODE_RULES = {
    "normal": _Rules(headings=False, masked_links=False, max_depth=4),
    "extended": _Rules(headings=True, masked_links=True, max_depth=8),
}


@dataclass(frozen=True)
class ParsedContent:
    nodes: tuple[MarkupNode, ...]
    large_emoji: bool


class _NodeBuffer:
    def __init__(self) -> None:
        self._nodes: list[MarkupNode] = []
        self._text: list[str] = []

    def text(self, value: str) -> None:
        if value:
            self._text.append(value)

    def add(self, node: MarkupNode) -> None:
        if isinstance(node, Text):
            self.text(node.content)
            return
        self._flush()
        self._nodes.append(node)

    def _flush(self) -> None:
        if self._text:
            self._nodes.append(Text("".join(self._text)))
            self._text = []

    def nodes(self) -> list[MarkupNode]:
        self._flush()
        return self._nodes


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


class _Parser:
    def __init__(self, rules: _Rules):
        self.rules = rules

    def parse(
        self, text: str, depth: int, *, block: bool, quote: bool = True
    ) -> list[MarkupNode]:
        out = _NodeBuffer()
        # positions a failed closer search already walked, per delimiter
        closers: defaultdict[str, set[int]] = defaultdict(set)
        i = 0
        n = len(text)
        while i < n:
            if block and (i == 0 or text[i - 1] == "\n"):
                matched = self._block_rule(text, i, depth, quote=quote)
                if matched is not None:
                    node, i = matched
                    out.add(node)
                    continue
            matched = self._inline_rule(text, i, depth, closers)
            if matched is not None:
                node, i = matched
                out.add(node)
                continue
            out.text(text[i])
            i += 1
        return out.nodes()

    def _block_rule(
        self, text: str, i: int, depth: int, *, quote: bool
    ) -> tuple[MarkupNode, int] | None:
        if quote and depth < self.rules.max_depth and text.startswith(">", i):
            if text.startswith(">>> ", i):
                inner = text[i + 4 :]
                if inner.strip():
                    children = self.parse(inner, depth + 1, block=True, quote=False)
                    return BlockQuote(tuple(children)), len(text)
            elif text.startswith("> ", i):
                lines: list[str] = []
                pos = i
                while text.startswith("> ", pos):
                    line_end = text.find("\n", pos)
                    if line_end == -1:
                        line_end = len(text)
                    lines.append(text[pos + 2 : line_end])
                    end = line_end
                    if line_end >= len(text) or not text.startswith("> ", line_end + 1):
                        break
                    pos = line_end + 1
                inner = "\n".join(lines)
                if inner.strip():
                    children = self.parse(inner, depth + 1, block=True, quote=False)
                    return BlockQuote(tuple(children)), end

        if self.rules.headings and text.startswith("#", i):
            match = _HEADING_RE.match(text, i)
            if match:
                children = self.parse(match.group(2).rstrip(), depth + 1, block=False)
                return Heading(len(match.group(1)), tuple(children)), match.end()
        return None

    def _inline_rule(
        self, text: str, i: int, depth: int, closers: defaultdict[str, set[int]]
    ) -> tuple[MarkupNode, int] | None:
        ch = text[i]
        if ch == "\\":
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if nxt and not nxt.isalnum() and not nxt.isspace():
                return Text(text[i + 1]), i + 2
            return None
        if ch == "`":
            return self._code(text, i)
        if ch in "*_~|" and depth < self.rules.max_depth:
            return self._emphasis(text, i, depth, closers)
        if ch == "<":
            return self._reference(text, i)
        if ch == "@" and (i == 0 or not _is_word_char(text[i - 1])):
            match = _EVERYONE_RE.match(text, i)
            if match:
                return Mention("everyone", match.group(1)), match.end()
            return None
        if ch == "[" and self.rules.masked_links and depth < self.rules.max_depth:
            match = _MASKED_LINK_RE.match(text, i)
            if match:
                children = self.parse(match.group(1), depth + 1, block=False)
                return Link(match.group(2), tuple(children)), match.end()
            return None
        if ch == "h" and (i == 0 or not text[i - 1].isalnum()):
            match = _URL_RE.match(text, i)
            if match:
                url = match.group(0)
                return Link(url, (Text(url),)), match.end()
        return None

    def _code(self, text: str, i: int) -> tuple[MarkupNode, int]:
        if text.startswith("```", i):
            close = text.find("```", i + 3)
            if close != -1:
                inner = text[i + 3 : close]
                language = None
                lang_match = _CODE_LANGUAGE_RE.match(inner)
                if lang_match:
                    language = lang_match.group(1)
                    inner = inner[lang_match.end() :]
                inner = inner.strip("\n")
                if inner:
                    return CodeBlock(language, inner), close + 3

        run = _backtick_run(text, i)
        close = _find_backtick_run(text, i + run, run)
        if close is None:
            return Text("`" * run), i + run
        content = text[i + run : close]
        if content.startswith(" ") and content.endswith(" ") and content.strip():
            content = content[1:-1]
        return InlineCode(content), close + run

    def _emphasis(
        self, text: str, i: int, depth: int, closers: defaultdict[str, set[int]]
    ) -> tuple[MarkupNode, int] | None:
        if text.startswith("**", i):
            close = _find_closer(
                text, i + 2, "**", not_followed_by="*", dead=closers["**"]
            )
            if close is not None:
                return self._wrap(Bold, text, i + 2, close, depth), close + 2
        if text.startswith("*", i):
            close = _find_star_em_closer(text, i + 1, closers["*"])
            if close is not None:
                return self._wrap(Italic, text, i + 1, close, depth), close + 1
            return None
        if text.startswith("__", i):
            close = _find_closer(
                text, i + 2, "__", not_followed_by="_", dead=closers["__"]
            )
            if close is not None:
                return self._wrap(Underline, text, i + 2, close, depth), close + 2
        if text.startswith("_", i):
            if i > 0 and _is_word_char(text[i - 1]):
                return None
            close = _find_underscore_em_closer(text, i + 1, closers["_"])
            if close is not None:
                return self._wrap(Italic, text, i + 1, close, depth), close + 1
            return None
        if text.startswith("~~", i):
            close = _find_closer(text, i + 2, "~~", dead=closers["~~"])
            if close is not None:
                return self._wrap(Strikethrough, text, i + 2, close, depth), close + 2
            return None
        if text.startswith("||", i):
            close = _find_closer(text, i + 2, "||", dead=closers["||"])
            if close is not None:
                return self._wrap(Spoiler, text, i + 2, close, depth), close + 2
        return None

    def _wrap(self, cls, text: str, start: int, end: int, depth: int) -> MarkupNode:
        children = self.parse(text[start:end], depth + 1, block=False)
        return cls(tuple(children))

    def _reference(self, text: str, i: int) -> tuple[MarkupNode, int] | None:
        match = _USER_MENTION_RE.match(text, i)
        if match:
            return Mention("user", match.group(1)), match.end()
        match = _ROLE_MENTION_RE.match(text, i)
        if match:
            return Mention("role", match.group(1)), match.end()
        match = _CHANNEL_MENTION_RE.match(text, i)
        if match:
            return Mention("channel", match.group(1)), match.end()
        match = _CUSTOM_EMOJI_RE.match(text, i)
        if match:
            node = CustomEmoji(
                id=match.group(3), name=match.group(2), animated=bool(match.group(1))
            )
            return node, match.end()
        match = _TIMESTAMP_RE.match(text, i)
        if match:
            return Timestamp(int(match.group(1)), match.group(2) or "f"), match.end()
        match = _AUTOLINK_RE.match(text, i)
        if match:
            url = match.group(1)
            return Link(url, (Text(url),)), match.end()
        return None


def _backtick_run(text: str, i: int) -> int:
    run = 0
    while i + run < len(text) and text[i + run] == "`":
        run += 1
    return run


def _find_backtick_run(text: str, start: int, run: int) -> int | None:
    i = start
    while i < len(text):
        if text[i] == "`":
            length = _backtick_run(text, i)
            if length == run:
                return i
            i += length
            continue
        i += 1
    return None


def _skip_code_span(text: str, i: int) -> int | None:
    if text.startswith("```", i):
        close = text.find("```", i + 3)
        if close != -1:
            return close + 3
    run = _backtick_run(text, i)
    close = _find_backtick_run(text, i + run, run)
    if close is None:
        return None
    return close + run


def _find_closer(
    text: str,
    start: int,
    delim: str,
    *,
    not_followed_by: str | None = None,
    dead: set[int] | None = None,
) -> int | None:
    walked: list[int] = []
    i = start
    while i < len(text):
        if i > start:
            if dead is not None and i in dead:
                break
            walked.append(i)
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            end = _skip_code_span(text, i)
            if end is not None:
                i = end
                continue
        if i > start and text.startswith(delim, i):
            after = i + len(delim)
            if not_followed_by is None or not text.startswith(not_followed_by, after):
                return i
        i += 1
    if dead is not None:
        dead.update(walked)
    return None


def _find_star_em_closer(
    text: str, start: int, dead: set[int] | None = None
) -> int | None:
    if start >= len(text) or text[start].isspace():
        return None
    walked: list[int] = []
    i = start
    while i < len(text):
        if i > start:
            if dead is not None and i in dead:
                break
            walked.append(i)
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            end = _skip_code_span(text, i)
            if end is not None:
                i = end
                continue
        if text.startswith("**", i) and i > start:
            i += 2
            continue
        if ch == "*" and i > start and not text[i - 1].isspace():
            return i
        i += 1
    if dead is not None:
        dead.update(walked)
    return None


def _find_underscore_em_closer(
    text: str, start: int, dead: set[int] | None = None
) -> int | None:
    if start >= len(text) or text[start].isspace():
        return None
    walked: list[int] = []
    i = start
    while i < len(text):
        if i > start:
            if dead is not None and i in dead:
                break
            walked.append(i)
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            end = _skip_code_span(text, i)
            if end is not None:
                i = end
                continue
        if text.startswith("__", i):
            i += 2
            continue
        if ch == "_" and i > start:
            after = i + 1
            if after >= len(text) or not _is_word_char(text[after]):
                return i
        i += 1
    if dead is not None:
        dead.update(walked)
    return None


def parse(raw: str, mode: str = "normal") -> list[MarkupNode]:
    rules = _MODE_RULES.get(mode)
    if rules is None:
        raise ValueError(f"unknown parse mode: {mode!r}")
    if not raw:
        return []
    return _Parser(rules).parse(raw, 0, block=True)


def is_large_emoji(
    nodes: list[MarkupNode] | tuple[MarkupNode, ...],
    threshold: int = DEFAULT_EMOJI_LARGE_THRESHOLD,
) -> bool:
    count = 0
    for node in nodes:
        if isinstance(node, CustomEmoji):
            count += 1
        elif isinstance(node, Text):
            found = count_emoji_only(node.content)
            if found is None:
                return False
            count += found
        else:
            return False
    return 0 < count <= threshold


def parse_message(
    raw: str,
    mode: str = "normal",
    *,
    emoji_large_threshold: int = DEFAULT_EMOJI_LARGE_THRESHOLD,
) -> ParsedContent:
    nodes = parse(raw, mode)
    return ParsedContent(
        nodes=tuple(nodes),
        large_emoji=is_large_emoji(nodes, emoji_large_threshold),
    )
