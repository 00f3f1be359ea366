"""
Summary document rendering and archiving.

Turns the final summary text into a Word document with python-docx and stores
it, together with the plain text, under a name derived from the session and
its close timestamp.
"""

import logging
import os
import re
from typing import Dict, List

from docx import Document

from ..audio.utils import safe_name
from ..models import SummaryResult
from .blocks import BULLET, HEADING, QUOTE, TABLE_ROW, Block, parse_summary_blocks

logger = logging.getLogger(__name__)

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*|__(.+?)__")


def _plain(text: str) -> str:
    return _BOLD_RE.sub(lambda m: m.group(1) or m.group(2), text)


def _add_table(document, rows: List[Block]) -> None:
    width = max(len(row.cells) for row in rows)
    table = document.add_table(rows=0, cols=width)
    table.style = "Table Grid"
    for row in rows:
        cells = table.add_row().cells
        for index, value in enumerate(row.cells):
            cells[index].text = _plain(value)


def render_summary_docx(summary_text: str, output_path: str, title: str = "Meeting Protokoll") -> str:
    """
    Write summary text as a .docx file.

    Args:
        summary_text: Summary produced by the summarizer
        output_path: Destination file
        title: Document title

    Returns:
        output_path
    """
    document = Document()
    document.add_heading(title, level=0)

    pending_rows: List[Block] = []
    for block in parse_summary_blocks(summary_text):
        if block.kind == TABLE_ROW:
            pending_rows.append(block)
            continue
        if pending_rows:
            _add_table(document, pending_rows)
            pending_rows = []

        if block.kind == HEADING:
            document.add_heading(_plain(block.text), level=min(block.level, 4))
        elif block.kind == BULLET:
            document.add_paragraph(_plain(block.text), style="List Bullet")
        elif block.kind == QUOTE:
            document.add_paragraph(_plain(block.text), style="Quote")
        else:
            document.add_paragraph(_plain(block.text))

    if pending_rows:
        _add_table(document, pending_rows)

    document.save(output_path)
    return output_path


class SummaryArchive:
    """Stores successful summaries as .txt and .docx files."""

    def __init__(self, summary_dir: str = "summaries"):
        self.summary_dir = summary_dir
        os.makedirs(self.summary_dir, exist_ok=True)

    def basename_for(self, result: SummaryResult) -> str:
        stamp = result.closed_at.strftime("%Y-%m-%d-%H-%M-%S")
        return f"{safe_name(result.key.room_id)}-{safe_name(result.key.channel_id)}-{stamp}"

    def save(self, result: SummaryResult) -> Dict[str, str]:
        """
        Persist a summary.

        Returns:
            Mapping with 'text' and 'document' paths, empty if there is no summary
        """
        if not result.has_summary:
            return {}

        base = os.path.join(self.summary_dir, self.basename_for(result))
        text_path = f"{base}.txt"
        with open(text_path, "w", encoding="utf-8") as handle:
            handle.write(result.text)

        title = f"Meeting Protokoll {result.closed_at.strftime('%Y-%m-%d %H:%M')}"
        document_path = render_summary_docx(result.text, f"{base}.docx", title=title)
        logger.info(f"Saved summary to {text_path} and {document_path}")
        return {"text": text_path, "document": document_path}
