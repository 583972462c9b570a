"""Utility helpers for hashing, file naming and path handling."""

from __future__ import annotations

import hashlib
import posixpath
import re
from urllib.parse import urlparse

UNSAFE_FILENAME_PATTERN = re.compile(r'[<>:"/\\|?*]')
URL_EXTENSION_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg|bmp)(\?|#|$)", re.IGNORECASE)
DEFAULT_EXTENSION = "jpg"


def fingerprint(content: str) -> str:
    """Return the hex SHA-256 digest of the UTF-8 encoded document content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def sanitize_filename(name: str) -> str:
    """Replace characters that are not allowed in file names on common filesystems."""
    return UNSAFE_FILENAME_PATTERN.sub("_", name)


def _short_hash(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:8]


def local_asset_name(url: str) -> str:
    """Derive a stable local file name for a remote asset URL.

    The basename of the URL path is used when it carries an extension.
    Otherwise the name is a short hash of the full URL plus an extension
    sniffed from the URL string, defaulting to ``jpg``.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return f"{_short_hash(url)}.{DEFAULT_EXTENSION}"

    basename = posixpath.basename(parsed.path)
    if basename and "." in basename:
        return sanitize_filename(basename)

    match = URL_EXTENSION_PATTERN.search(url)
    extension = match.group(1) if match else DEFAULT_EXTENSION
    return f"{_short_hash(url)}.{extension}"
