import html
import logging
import os
import re

from PyPDF2 import PdfReader

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
# Leaves room for the ordinal prefix and extension under the 255-byte name limit.
MAX_TITLE_BYTES = 200


def sanitize_filename(text):
    """Create safe filenames from titles"""
    text = re.sub(r'[\\/*?:"<>|]', '_', text or '')
    text = re.sub(r'\s+', '_', text.strip())
    text = text[:MAX_TITLE_LENGTH]
    text = text.encode('utf-8')[:MAX_TITLE_BYTES].decode('utf-8', errors='ignore')
    return text.strip('_.') or 'untitled'


def ordinal_width(total):
    return max(3, len(str(total)))


def artifact_filename(original_index, title, total, ext='pdf'):
    """Zero-padded, 1-based ordinal prefix so that lexical order equals item order."""
    width = ordinal_width(total)
    return f"{original_index + 1:0{width}d}_{sanitize_filename(title)}.{ext}"


def get_pdf_page_count(pdf_path):
    """Get the number of pages in a PDF file"""
    try:
        with open(pdf_path, 'rb') as file:
            reader = PdfReader(file)
            return len(reader.pages)
    except Exception as e:
        logger.warning("Error getting page count for %s: %s", pdf_path, e)
        return 0


def create_article_html(title, body_html):
    """Standalone print page for one sanitized item."""
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{html.escape(title)}</title>
<style>
    @page {{ size: A4; margin: 20mm 15mm; }}
    body {{
        font-family: -apple-system, BlinkMacSystemFont, "PingFang SC", "Helvetica Neue", sans-serif;
        font-size: 15px;
        line-height: 1.7;
        color: #1d1d1f;
        margin: 0;
        overflow-wrap: break-word;
        word-break: break-word;
    }}
    h1.article-title {{
        font-size: 28px;
        font-weight: 600;
        line-height: 1.4;
        margin: 0 0 30px;
    }}
    pre, code {{
        font-family: Menlo, Consolas, "Courier New", monospace;
        font-size: 13px;
    }}
    pre {{
        white-space: pre-wrap;
        background: #f5f5f7;
        padding: 12px;
        border-radius: 4px;
        page-break-inside: avoid;
    }}
    img {{ max-width: 100%; height: auto; page-break-inside: avoid; }}
    table {{ max-width: 100%; border-collapse: collapse; table-layout: auto; }}
    th, td {{ border: 1px solid #d2d2d7; padding: 4px 8px; }}
    blockquote {{ border-left: 3px solid #d2d2d7; margin: 0; padding-left: 12px; color: #515154; }}
</style>
</head>
<body>
<h1 class="article-title">{html.escape(title)}</h1>
{body_html}
</body>
</html>
"""


def remove_files(paths):
    """Delete files, returning how many were removed."""
    removed = 0
    for path in paths:
        try:
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
    return removed
