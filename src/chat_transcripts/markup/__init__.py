from .emoji import count_emoji_only, custom_emoji_url, find_unicode_emoji
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
    iter_nodes,
    node_to_data,
    nodes_to_data,
    plain_text,
)
from .parser import (
    DEFAULT_EMOJI_LARGE_THRESHOLD,
    PARSE_MODES,
    ParsedContent,
    is_large_emoji,
    parse,
    parse_message,
)

__all__ = [
    "BlockQuote",
    "Bold",
    "CodeBlock",
    "CustomEmoji",
    "DEFAULT_EMOJI_LARGE_THRESHOLD",
    "Heading",
    "InlineCode",
    "Italic",
    "Link",
    "MarkupNode",
    "Mention",
    "PARSE_MODES",
    "ParsedContent",
    "Spoiler",
    "Strikethrough",
    "Text",
    "Timestamp",
    "Underline",
    "count_emoji_only",
    "custom_emoji_url",
    "find_unicode_emoji",
    "is_large_emoji",
    "iter_nodes",
    "node_to_data",
    "nodes_to_data",
    "parse",
    "parse_message",
    "plain_text",
]
