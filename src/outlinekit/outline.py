"""Markdown outline import and export.

An outline is a list of indented bullets (``-``, ``*`` or ``+``), one block
per bullet, nesting given by indentation:

    - Project
      - Tasks
        - Write parser
          second line of the same block
      - Notes

The indent unit is detected from the source (two spaces by default).
Continuation lines belong to the bullet above them, bullet-looking lines
inside a code fence are content, and anything before the first bullet is
ignored.
"""

from dataclasses import dataclass, field
from typing import Optional

from outlinekit.models.block import BlockType, NewBlock
from outlinekit.tree_index import ROOT, TreeIndex


BULLET_MARKERS = ("-", "*", "+")
FENCE = "```"


@dataclass
class OutlineNode:
    """One bullet of a parsed outline.

    Attributes:
        lines: First line followed by continuation lines
        indent_level: Nesting depth (0 = top level)
        children: Nested bullets, in source order
    """

    lines: list[str]
    indent_level: int
    children: list["OutlineNode"] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "\n".join(self.lines)


def parse_outline(markdown: str) -> list[OutlineNode]:
    """Parse an indented bullet list into a tree of nodes.

    Args:
        markdown: Markdown text

    Returns:
        Top-level nodes (empty if the text holds no bullets)
    """
    if not markdown.strip():
        return []

    lines = markdown.split("\n")
    indent_str = _detect_indentation(lines)

    roots: list[OutlineNode] = []
    stack: list[tuple[int, OutlineNode]] = []
    current: Optional[OutlineNode] = None
    continuation_indent = ""
    in_fence = False

    for line in lines:
        if not in_fence and _is_bullet_line(line):
            leading = line[: len(line) - len(line.lstrip())]
            indent_level = leading.count(indent_str) if indent_str else 0
            stripped = line.lstrip()
            node = OutlineNode(lines=[stripped[2:] if len(stripped) > 1 else ""], indent_level=indent_level)

            while stack and stack[-1][0] >= indent_level:
                stack.pop()
            if stack:
                # Skipped levels attach to the nearest shallower bullet
                parent = stack[-1][1]
                node.indent_level = parent.indent_level + 1
                parent.children.append(node)
            else:
                node.indent_level = 0
                roots.append(node)
            stack.append((indent_level, node))

            current = node
            continuation_indent = leading + "  "
            in_fence = node.lines[0].startswith(FENCE)
            continue

        if current is None:
            continue

        if line.lstrip().startswith(FENCE):
            in_fence = not in_fence

        if line.startswith(continuation_indent):
            current.lines.append(line[len(continuation_indent):])
        else:
            current.lines.append(line.lstrip())

    for node in _walk(roots):
        while len(node.lines) > 1 and not node.lines[-1].strip():
            node.lines.pop()
    return roots


def outline_to_new_blocks(nodes: list[OutlineNode]) -> list[NewBlock]:
    """Convert parsed nodes into creation requests for the engine."""
    return [
        NewBlock(
            content=node.content,
            block_type=BlockType.CODE if node.content.startswith(FENCE) else BlockType.BULLET,
            children=outline_to_new_blocks(node.children),
        )
        for node in nodes
    ]


def render_outline(index: TreeIndex, indent_str: str = "  ") -> str:
    """Render every block of a page (collapsed or not) as an indented outline.

    Args:
        index: Tree index of the page
        indent_str: One level of indentation

    Returns:
        Markdown text (no trailing newline)
    """
    rendered: list[str] = []

    def render(parent_id: Optional[str], depth: int) -> None:
        for block_id in index.children(parent_id):
            block = index.get(block_id)
            indent = indent_str * depth
            first, *rest = block.content.split("\n")
            rendered.append(f"{indent}- {first}" if first else f"{indent}-")
            for line in rest:
                rendered.append(f"{indent}  {line}" if line else "")
            render(block_id, depth + 1)

    render(ROOT, 0)
    return "\n".join(rendered)


def _is_bullet_line(line: str) -> bool:
    stripped = line.lstrip()
    return any(stripped == marker or stripped.startswith(marker + " ") for marker in BULLET_MARKERS)


def _detect_indentation(lines: list[str]) -> str:
    """Shortest leading whitespace of any indented bullet ("  " if none)."""
    indents = [
        line[: len(line) - len(line.lstrip())]
        for line in lines
        if line.strip() and _is_bullet_line(line) and line != line.lstrip()
    ]
    return min(indents, key=len) if indents else "  "


def _walk(nodes: list[OutlineNode]):
    for node in nodes:
        yield node
        yield from _walk(node.children)
