"""
Utility functions for file system operations and upload validation.

This module provides helper functions for:
- Sanitizing uploaded filenames into safe blob names
- Ensuring directory creation
- Recognising PDF uploads by MIME type and magic bytes
"""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Optional

# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9_.-]")

PDF_MIME_TYPE = "application/pdf"
PDF_MAGIC = b"%PDF"


def sanitize_filename(filename: str, fallback: str = "document.pdf") -> str:
    """
    Replace every character that is unsafe in a blob key with an underscore.

    Example:
        >>> sanitize_filename("My Check (1).pdf")
        "My_Check__1_.pdf"
        >>> sanitize_filename("")
        "document.pdf"
    """
    cleaned = SANITIZE_PATTERN.sub("_", Path(filename).name.strip())
    cleaned = cleaned.lstrip(".")
    return cleaned or fallback


def make_blob_name(filename: str, now: Optional[float] = None) -> str:
    """Build a blob name of the form ``<epoch-millis>-<sanitized filename>``."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{millis}-{sanitize_filename(filename)}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_pdf_upload(content_type: Optional[str], content: bytes) -> bool:
    """
    Return True only when both the declared MIME type and the leading bytes say PDF.

    The magic check looks at the first four bytes, so a file whose header is
    merely near the start is rejected.
    """
    return content_type == PDF_MIME_TYPE and PDF_MAGIC in content[:4]
