"""Render block trees to XML-like prompt markup.

This module converts a tree view (see blocks_tree.build_tree) into output
lines. Tags open before content, children follow, and tags close last.
Fragment references are resolved through a lookup callable; a fragment
that no longer exists renders as nothing.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from .blocks_models import Block, BlockKind

FragmentLookup = Callable[[str], str | None]

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_ATTRIBUTE_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
)


@dataclass(frozen=True)
class RenderOptions:
    """Presentation parameters. None of them touch the stored document."""

    indent_size: int = 2
    indent_char: str = " "
    line_numbers: bool = False
    gutter_width: int = 3
    escape_attributes: bool = True

    def indent(self, level: int) -> str:
        return self.indent_char * (self.indent_size * level)


@dataclass(frozen=True)
class RenderedLine:
    """One output line and the block that produced it."""

    text: str
    block_id: str
    role: str  # "open", "content" or "close"


def render_lines(
    tree: list[Block],
    fragment_lookup: FragmentLookup,
    options: RenderOptions | None = None,
) -> list[RenderedLine]:
    """Render a tree to lines, in emission order.

    Args:
        tree: Root blocks with children populated.
        fragment_lookup: Returns a fragment's content, or None if missing.
        options: Indentation and escaping options.

    Returns:
        Rendered lines with their originating block IDs.
    """
    options = options or RenderOptions()
    lines: list[RenderedLine] = []
    for block in tree:
        _render_block(block, 0, fragment_lookup, options, lines)
    return lines


def render(
    tree: list[Block],
    fragment_lookup: FragmentLookup,
    options: RenderOptions | None = None,
) -> str:
    """Render a tree to a single string.

    With options.line_numbers every line is prefixed by its 1-based number,
    right-aligned in a gutter of options.gutter_width characters.
    """
    options = options or RenderOptions()
    lines = render_lines(tree, fragment_lookup, options)

    if options.line_numbers:
        return "\n".join(
            f"{number:>{options.gutter_width}} | {line.text}"
            for number, line in enumerate(lines, start=1)
        )

    return "\n".join(line.text for line in lines)


def line_index(lines: list[RenderedLine]) -> dict[int, str]:
    """Map 1-based line numbers back to the block that emitted them."""
    return {number: line.block_id for number, line in enumerate(lines, start=1)}


def _render_block(
    block: Block,
    level: int,
    fragment_lookup: FragmentLookup,
    options: RenderOptions,
    lines: list[RenderedLine],
) -> None:
    """Render a single block and its children."""
    indent = options.indent(level)
    content_indent = options.indent(level + 1) if block.tag_name else indent

    if block.tag_name:
        lines.append(RenderedLine(f"{indent}{_open_tag(block, options)}", block.id, "open"))

    for text in _content_lines(block, fragment_lookup):
        lines.append(RenderedLine(f"{content_indent}{text}", block.id, "content"))

    if block.kind == BlockKind.CONTAINER and block.children:
        child_level = level + 1 if block.tag_name else level
        for child in block.children:
            _render_block(child, child_level, fragment_lookup, options, lines)

    if block.tag_name:
        lines.append(RenderedLine(f"{indent}</{block.tag_name}>", block.id, "close"))


def _content_lines(block: Block, fragment_lookup: FragmentLookup) -> list[str]:
    if block.kind == BlockKind.TEXT and block.content:
        return _LINE_BREAK.split(block.content)

    if block.kind == BlockKind.FRAGMENT_REF and block.fragment_id:
        content = fragment_lookup(block.fragment_id)
        if content is not None:
            return _LINE_BREAK.split(content)

    return []


def _open_tag(block: Block, options: RenderOptions) -> str:
    parts = [block.tag_name]
    for name, value in block.attributes.items():
        if options.escape_attributes:
            value = _escape_attribute(value)
        parts.append(f'{name}="{value}"')
    return "<" + " ".join(parts) + ">"


def _escape_attribute(value: str) -> str:
    for char, entity in _ATTRIBUTE_ESCAPES:
        value = value.replace(char, entity)
    return value
