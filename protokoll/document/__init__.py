"""
Summary document structure parsing and rendering.
"""

from .blocks import Block, parse_summary_blocks
from .renderer import SummaryArchive, render_summary_docx

__all__ = ["Block", "SummaryArchive", "parse_summary_blocks", "render_summary_docx"]
