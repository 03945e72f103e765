"""Gallery listing helpers for the ImagiNexus API.

This module keeps the listing logic out of ``imaginexus.api.main`` so route
handlers can focus on HTTP concerns. Entries are plain dictionaries built
from :class:`~imaginexus.core.models.GeneratedArtifact` records and arrive
in reverse-chronological order (newest first).
"""

from __future__ import annotations

from collections import Counter

from imaginexus.core.models import GeneratedArtifact


def artifacts_to_entries(artifacts: list[GeneratedArtifact]) -> list[dict]:
    """Convert stored artifacts to JSON-ready gallery entries."""
    return [artifact.to_dict() for artifact in artifacts]


def filter_gallery_entries(
    entries: list[dict],
    *,
    style: str | None = None,
    aspect_ratio: str | None = None,
) -> list[dict]:
    """Apply style and aspect-ratio filters to gallery entries.

    Args:
        entries: Source gallery entries.
        style: Optional style token to keep.
        aspect_ratio: Optional aspect-ratio token to keep.

    Returns:
        Filtered gallery entries in their original order.
    """
    filtered_entries = entries

    if style:
        filtered_entries = [entry for entry in filtered_entries if entry.get("style") == style]

    if aspect_ratio:
        filtered_entries = [
            entry for entry in filtered_entries if entry.get("aspect_ratio") == aspect_ratio
        ]

    return filtered_entries


def paginate_gallery_entries(entries: list[dict], page: int, per_page: int) -> dict:
    """Paginate gallery entries and clamp the requested page to valid bounds.

    A page past the end resolves to the last page, and page numbers below one
    resolve to the first page, so the client and server always agree on the
    page actually shown.

    Args:
        entries: Filtered gallery entries.
        page: Requested one-based page number.
        per_page: Requested items per page (at least 1).

    Returns:
        Dictionary containing ``total``, ``page``, ``per_page``, ``pages``, and
        ``images`` for the resolved page.
    """
    per_page = max(per_page, 1)
    total = len(entries)
    pages = (total + per_page - 1) // per_page if total > 0 else 1
    resolved_page = min(max(page, 1), pages)

    start = (resolved_page - 1) * per_page
    end = start + per_page

    return {
        "total": total,
        "page": resolved_page,
        "per_page": per_page,
        "pages": pages,
        "images": entries[start:end],
    }


def gallery_stats(entries: list[dict]) -> dict:
    """Count images in total and per style."""
    style_counts = Counter(entry.get("style", "unknown") for entry in entries)
    return {
        "total_images": len(entries),
        "style_counts": dict(style_counts),
    }
