"""
Template substitution: placeholder resolution over a document graph.
"""

from .pipeline import invalid_tag_text, normalize_tags, render_document, sanitize_tags
from .report import build_report
from .scanner import mapping_skeleton, scan_text
