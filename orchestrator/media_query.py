"""Search, filter, sort and redundancy summaries over the cached media view."""

from typing import Iterable, List, Sequence
from urllib.parse import urlparse

from common.types import Blob, ServerList
from orchestrator.availability_probe import AvailabilityProbe

SORT_ORDERS = ("newest", "oldest", "largest", "smallest", "name")
KIND_FILTERS = ("all", "images", "videos", "other")


def is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def is_video(mime_type: str) -> bool:
    return mime_type.startswith("video/")


def display_name(blob: Blob) -> str:
    """Filename if known, otherwise the first 8 characters of the hash."""
    return blob.filename or blob.hash[:8]


def filter_media(blobs: Iterable[Blob], search: str = "", kind: str = "all") -> List[Blob]:
    """
    Filter blobs by a case-insensitive search term and a media kind.

    The search term matches the filename (or the hash when no filename is
    known) and the mime type.
    """
    if kind not in KIND_FILTERS:
        raise ValueError(f"Unknown kind filter '{kind}', expected one of {', '.join(KIND_FILTERS)}")

    result = [b for b in blobs if b and b.hash and b.mime_type]

    term = search.strip().lower()
    if term:
        result = [
            b for b in result
            if term in (b.filename or b.hash).lower() or term in b.mime_type.lower()
        ]

    if kind == "images":
        result = [b for b in result if is_image(b.mime_type)]
    elif kind == "videos":
        result = [b for b in result if is_video(b.mime_type)]
    elif kind == "other":
        result = [b for b in result if not is_image(b.mime_type) and not is_video(b.mime_type)]

    return result


def sort_media(blobs: Iterable[Blob], order: str = "newest") -> List[Blob]:
    if order == "newest":
        return sorted(blobs, key=lambda b: b.uploaded_at, reverse=True)
    if order == "oldest":
        return sorted(blobs, key=lambda b: b.uploaded_at)
    if order == "largest":
        return sorted(blobs, key=lambda b: b.size, reverse=True)
    if order == "smallest":
        return sorted(blobs, key=lambda b: b.size)
    if order == "name":
        return sorted(blobs, key=lambda b: display_name(b).lower())
    raise ValueError(f"Unknown sort order '{order}', expected one of {', '.join(SORT_ORDERS)}")


def redundancy_percentage(blobs: Sequence[Blob]) -> int:
    """Share of blobs present on more than one server, as a rounded percentage."""
    return int(AvailabilityProbe.redundancy(blobs) * 100 + 0.5)


def describe_servers(server_list: ServerList, limit: int = 3) -> str:
    """Short hostname summary, e.g. 'a.example, b.example and 2 more servers'."""
    names = [urlparse(url).hostname or url for url in server_list.servers[:limit]]
    remaining = len(server_list.servers) - limit
    if remaining > 0:
        return f"{', '.join(names)} and {remaining} more server{'' if remaining == 1 else 's'}"
    return ", ".join(names)
