"""Output formatting helpers for the CLI."""

from datetime import datetime, timezone
from typing import Dict, Iterable

from common.types import Blob, MirrorResult, ServerList
from orchestrator.media_query import display_name


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_timestamp(timestamp: int) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def format_server_list(server_list: ServerList) -> str:
    if server_list.is_empty():
        return "No servers configured. Use 'add-server <url>' to add one."
    lines = [f"Servers for {server_list.owner[:8]}... ({len(server_list.servers)}):"]
    for index, url in enumerate(server_list.servers):
        role = "primary" if index == 0 else "mirror"
        lines.append(f"  {index + 1}. {url} ({role})")
    return "\n".join(lines)


def format_blob_row(blob: Blob, server_count: int) -> str:
    """One listing line: short hash, name, size, type, date and server coverage."""
    present = len(blob.present_on())
    return (
        f"  {blob.hash[:12]}  {display_name(blob)[:32]:<32}  {format_file_size(blob.size):>10}  "
        f"{blob.mime_type[:24]:<24}  {format_timestamp(blob.uploaded_at)}  [{present}/{server_count}]"
    )


def format_availability(content_hash: str, availability: Dict[str, bool]) -> str:
    if not availability:
        return f"No servers to check for {content_hash[:12]}"
    lines = [f"Availability of {content_hash[:12]}:"]
    for server, present in availability.items():
        lines.append(f"  {'✓' if present else '✗'} {server}")
    return "\n".join(lines)


def format_mirror_results(results: Iterable[MirrorResult]) -> str:
    lines = []
    for result in results:
        if result.already_present:
            lines.append(f"  = {result.target} (already present)")
        elif result.success:
            lines.append(f"  ✓ {result.target}")
        else:
            lines.append(f"  ✗ {result.target}: {result.error}")
    return "\n".join(lines)
