"""Image reference extraction and link rewriting for Markdown documents."""

from __future__ import annotations

import re
from typing import Dict, List, Sequence

from bs4 import BeautifulSoup

from .models import AssetReference, ReferenceSyntax

INLINE_IMAGE_PATTERN = re.compile(r'!\[([^\]]*)\]\((https?://[^\s")]+)(?:\s+"([^"]*)")?\)')
IMG_TAG_PATTERN = re.compile(
    r"""<img\s+[^>]*?(?<![\w-])src=["'](https?://[^"']+)["'][^>]*>""", re.IGNORECASE
)
SRC_ATTRIBUTE_PATTERN = re.compile(r"""(?<![\w-])src=["']([^"']+)["']""", re.IGNORECASE)


def _tag_alt_text(tag_source: str) -> str:
    """Read the alt attribute of a single ``<img>`` tag."""
    img = BeautifulSoup(tag_source, "html.parser").find("img")
    if img is None:
        return ""
    alt = img.get("alt") or ""
    return alt.strip()


def extract_asset_references(text: str) -> List[AssetReference]:
    """Collect remote image references in document order.

    Inline Markdown images are returned first, followed by ``<img>`` tags.
    A tag whose source text or URL was already captured by an inline
    image is skipped. Repeated tags are all kept so each one is rewritten.
    """
    references: List[AssetReference] = []

    for match in INLINE_IMAGE_PATTERN.finditer(text):
        alt, url, title = match.groups()
        references.append(
            AssetReference(
                url=url.strip(),
                syntax=ReferenceSyntax.INLINE_LINK,
                source_text=match.group(0),
                alt_text=alt or "",
                title=title or "",
            )
        )

    inline = list(references)
    for match in IMG_TAG_PATTERN.finditer(text):
        source_text = match.group(0)
        url = match.group(1).strip()
        if any(ref.source_text == source_text or ref.url == url for ref in inline):
            continue
        references.append(
            AssetReference(
                url=url,
                syntax=ReferenceSyntax.TAG_ATTRIBUTE,
                source_text=source_text,
                alt_text=_tag_alt_text(source_text),
            )
        )
    return references


def render_reference(reference: AssetReference, local_path: str) -> str:
    """Return the replacement text pointing a reference at a local file."""
    if reference.syntax is ReferenceSyntax.INLINE_LINK:
        title_part = f' "{reference.title}"' if reference.title else ""
        return f"![{reference.alt_text}]({local_path}{title_part})"
    exact_src = re.compile(
        r"""(?<![\w-])src=(["'])\s*%s\s*\1""" % re.escape(reference.url), re.IGNORECASE
    )
    updated, count = exact_src.subn(lambda _: f'src="{local_path}"', reference.source_text, count=1)
    if count:
        return updated
    return SRC_ATTRIBUTE_PATTERN.sub(
        lambda _: f'src="{local_path}"', reference.source_text, count=1
    )


def rewrite_references(
    text: str,
    references: Sequence[AssetReference],
    resolved: Dict[str, str],
) -> str:
    """Swap remote image URLs for local paths where a download succeeded.

    ``resolved`` maps remote URLs to collection-relative local paths.
    References whose URL is absent from it keep pointing at the remote
    source.
    """
    updated = text
    for reference in references:
        local_path = resolved.get(reference.url)
        if not local_path:
            continue
        updated = updated.replace(
            reference.source_text, render_reference(reference, local_path), 1
        )
    return updated
