"""
Lightweight structure parser for summary text.

The summarization backend answers in loose Markdown. This module recognises
the handful of shapes the document renderer cares about and nothing more.
"""

import re
from dataclasses import dataclass, field
from typing import List

HEADING = "heading"
PARAGRAPH = "paragraph"
BULLET = "bullet"
TABLE_ROW = "table_row"
QUOTE = "quote"

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+(.*)$")
_RULE_RE = re.compile(r"^([-*_])(\s*\1){2,}$")
_TABLE_SEPARATOR_RE = re.compile(r"^\|?\s*:?-{2,}:?\s*(\|\s*:?-{2,}:?\s*)*\|?$")


@dataclass
class Block:
    kind: str
    text: str = ""
    level: int = 0
    cells: List[str] = field(default_factory=list)


def _table_cells(line: str) -> List[str]:
    inner = line.strip()
    if inner.startswith("|"):
        inner = inner[1:]
    if inner.endswith("|"):
        inner = inner[:-1]
    return [cell.strip() for cell in inner.split("|")]


def parse_summary_blocks(text: str) -> List[Block]:
    """
    Split summary text into headings, paragraphs, bullets, table rows and quotes.

    Consecutive plain lines form one paragraph; blank lines end it. Table
    separator rows (``|---|---|``) are dropped.
    """
    blocks: List[Block] = []
    paragraph: List[str] = []

    def flush() -> None:
        if paragraph:
            blocks.append(Block(kind=PARAGRAPH, text=" ".join(paragraph)))
            paragraph.clear()

    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            flush()
            continue

        if _RULE_RE.match(line):
            flush()
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            flush()
            blocks.append(Block(kind=HEADING, text=heading.group(2), level=len(heading.group(1))))
            continue

        if line.startswith("|") and line.count("|") >= 2:
            flush()
            if not _TABLE_SEPARATOR_RE.match(line):
                blocks.append(Block(kind=TABLE_ROW, cells=_table_cells(line)))
            continue

        if line.startswith(">"):
            flush()
            blocks.append(Block(kind=QUOTE, text=line.lstrip(">").strip()))
            continue

        bullet = _BULLET_RE.match(line)
        if bullet:
            flush()
            blocks.append(Block(kind=BULLET, text=bullet.group(1).strip()))
            continue

        paragraph.append(line)

    flush()
    return blocks
