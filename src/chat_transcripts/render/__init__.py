from .document import OUTPUT_FORMATS, dump_document
from .fragments import (
    ParsedEmbed,
    ParsedMessage,
    format_markup_timestamp,
    render_message,
    render_nodes,
)
from .text import nodes_text, render_transcript_text

__all__ = [
    "OUTPUT_FORMATS",
    "ParsedEmbed",
    "ParsedMessage",
    "dump_document",
    "format_markup_timestamp",
    "nodes_text",
    "render_message",
    "render_nodes",
    "render_transcript_text",
]
