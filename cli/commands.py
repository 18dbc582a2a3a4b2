"""Command handler functions for CLI operations."""

from pathlib import Path
from typing import Optional

from cli.config import Config
from cli.constants import CONFIG_DIR, CONFIG_FILE
from cli.models import (
    AddServerCommand,
    CheckCommand,
    CommandRequest,
    DeleteCommand,
    ListCommand,
    MirrorCommand,
    RefreshCommand,
    RemoveServerCommand,
    ReorderCommand,
    ServersCommand,
    SetOwnerCommand,
    UploadCommand,
    WhoamiCommand,
)
from cli.signing import create_command_signer
from cli.utils import (
    format_availability,
    format_blob_row,
    format_file_size,
    format_mirror_results,
    format_server_list,
)
from common.exceptions import MediaFleetError
from common.logging_config import get_logger
from common.types import is_content_hash
from orchestrator.context import MediaContext
from orchestrator.discovery import RelayDiscovery
from orchestrator.media_query import describe_servers, filter_media, redundancy_percentage, sort_media
from orchestrator.retry_policy import RetryPolicy
from orchestrator.storage_client import StorageClient

logger = get_logger(__name__)


class CommandError(Exception):
    """Raised when a command cannot run (missing setup, bad local input)."""

    pass


_config: Optional[Config] = None
_context: Optional[MediaContext] = None


def get_config() -> Config:
    """
    Get or create global Config instance.

    Returns:
        Config backed by ~/.mediafleet/config.json
    """
    global _config
    if _config is None:
        _config = Config(Path.home() / CONFIG_DIR / CONFIG_FILE)
    return _config


def build_context(config: Config) -> MediaContext:
    """
    Build a MediaContext from CLI configuration.

    Raises:
        CommandError: If the owner or the signer command is not configured
    """
    owner = config.get_owner()
    if not owner:
        raise CommandError("No owner set. Use 'set-owner <pubkey>' first.")
    signer_command = config.get_signer_command()
    if not signer_command:
        raise CommandError(
            f"No signer command configured. Set 'signer_command' in {config.config_path}."
        )

    retry = config.get_retry_config()
    return MediaContext(
        signer=create_command_signer(owner, signer_command),
        discovery=RelayDiscovery(),
        storage=StorageClient(timeout=config.get_timeout()),
        retry_policy=RetryPolicy(max_attempts=retry["max_retries"], base_delay=retry["retry_backoff_base"]),
        default_relays=config.get_relays(),
        cache_ttl=config.get_cache_ttl(),
    )


async def get_context() -> MediaContext:
    """
    Get or create global MediaContext, resolving the owner's server list once.

    Returns:
        MediaContext instance
    """
    global _context
    if _context is None:
        logger.debug("Creating new MediaContext instance")
        context = build_context(get_config())
        await context.store.set_publish_targets_from_owner(context.owner)
        await context.load_server_list()
        _context = context
    return _context


async def close_context() -> None:
    """Wait for background mirrors and release the global context."""
    global _context
    if _context is not None:
        context, _context = _context, None
        await context.close()


def resolve_hash(context: MediaContext, hash_prefix: str) -> str:
    """
    Expand a hash prefix against the cached media view.

    A full hash is returned as-is even if it is not cached.

    Raises:
        CommandError: If the prefix matches no blob or more than one
    """
    if is_content_hash(hash_prefix):
        return hash_prefix
    entry = context.cache.entry
    matches = [h for h in (entry.blobs if entry else {}) if h.startswith(hash_prefix)]
    if not matches:
        raise CommandError(f"No listed blob matches '{hash_prefix}'. Run 'list' or 'refresh' first.")
    if len(matches) > 1:
        raise CommandError(f"Hash prefix '{hash_prefix}' is ambiguous ({len(matches)} matches)")
    return matches[0]


async def handle_servers(cmd: ServersCommand, context: Optional[MediaContext] = None) -> str:
    if context is None:
        context = await get_context()
    return format_server_list(context.server_list)


async def handle_add_server(cmd: AddServerCommand, context: Optional[MediaContext] = None) -> str:
    """
    Handle 'add-server' command.

    Args:
        cmd: AddServerCommand with url
        context: Optional MediaContext for dependency injection (testing)

    Returns:
        Updated server list
    """
    logger.info(f"Executing add-server command [url={cmd.url}]")
    if context is None:
        context = await get_context()
    server_list = await context.add_server(cmd.url)
    return f"Added {cmd.url.rstrip('/')}\n{format_server_list(server_list)}"


async def handle_remove_server(cmd: RemoveServerCommand, context: Optional[MediaContext] = None) -> str:
    logger.info(f"Executing remove-server command [url={cmd.url}]")
    if context is None:
        context = await get_context()
    server_list = await context.remove_server(cmd.url)
    return f"Removed {cmd.url.rstrip('/')}\n{format_server_list(server_list)}"


async def handle_reorder(cmd: ReorderCommand, context: Optional[MediaContext] = None) -> str:
    """
    Handle 'reorder' command.

    URLs that are not in the current list are ignored; servers left out of
    the new order are dropped from the list.
    """
    if context is None:
        context = await get_context()
    server_list = await context.reorder_servers(list(cmd.order))
    return format_server_list(server_list)


async def handle_upload(cmd: UploadCommand, context: Optional[MediaContext] = None) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with local path and optional mime type
        context: Optional MediaContext for dependency injection (testing)

    Returns:
        Blob URL and hash, plus a note about background mirroring
    """
    path = Path(cmd.path)
    if not path.is_file():
        raise CommandError(f"File not found: {cmd.path}")

    logger.info(f"Executing upload command [path={cmd.path}]")
    if context is None:
        context = await get_context()

    data = path.read_bytes()
    blob = await context.upload(data, filename=path.name, mime_type=cmd.mime_type)

    lines = [
        f"Uploaded: {path.name} ({format_file_size(blob.size)}, {blob.mime_type})",
        f"  Hash: {blob.hash}",
        f"  URL:  {blob.url}",
    ]
    mirrors = context.server_list.mirrors
    if mirrors:
        lines.append(f"  Mirroring to {len(mirrors)} server(s) in the background")
    return "\n".join(lines)


async def handle_list(cmd: ListCommand, context: Optional[MediaContext] = None) -> str:
    """
    Handle 'list' command.

    Args:
        cmd: ListCommand with search term, kind filter and sort order
        context: Optional MediaContext for dependency injection (testing)

    Returns:
        Formatted media table with a redundancy summary
    """
    logger.info(f"Executing list command [search={cmd.search!r}, kind={cmd.kind}, sort={cmd.sort}]")
    if context is None:
        context = await get_context()
    if context.server_list.is_empty():
        return "No servers configured. Use 'add-server <url>' to add one."

    entry = await context.refresh()
    all_blobs = list(entry.blobs.values())
    blobs = sort_media(filter_media(all_blobs, cmd.search, cmd.kind), cmd.sort)

    server_count = len(context.server_list.servers)
    lines = []
    if not blobs:
        lines.append("No media found." if not all_blobs else "No media matches the filter.")
    else:
        lines.append(f"Found {len(blobs)} of {len(all_blobs)} blob(s):")
        lines.extend(format_blob_row(blob, server_count) for blob in blobs)

    lines.append(
        f"Redundancy: {redundancy_percentage(all_blobs)}% on more than one server "
        f"({describe_servers(context.server_list)})"
    )
    if entry.partial:
        lines.append(f"Warning: unreachable: {', '.join(entry.unreachable)}")
    if context.cache.last_error is not None:
        lines.append(f"Warning: showing cached results, refresh failed: {context.cache.last_error}")
    return "\n".join(lines)


async def handle_delete(cmd: DeleteCommand, context: Optional[MediaContext] = None) -> str:
    if context is None:
        context = await get_context()
    content_hash = resolve_hash(context, cmd.hash_prefix)
    logger.info(f"Executing delete command [hash={content_hash[:12]}]")
    result = await context.delete(content_hash)

    message = f"Deleted {content_hash[:12]} from {result.server}"
    if result.failures:
        message += f" (after {len(result.failures)} failed server(s))"
    return message


async def handle_mirror(cmd: MirrorCommand, context: Optional[MediaContext] = None) -> str:
    """
    Handle 'mirror' command.

    Without explicit targets the blob is copied to every listed server that
    does not hold it yet.
    """
    if context is None:
        context = await get_context()
    await context.refresh()
    content_hash = resolve_hash(context, cmd.hash_prefix)
    logger.info(f"Executing mirror command [hash={content_hash[:12]}, targets={len(cmd.targets) or 'auto'}]")

    results = await context.mirror(content_hash, list(cmd.targets) or None)
    if not results:
        return f"{content_hash[:12]} is already on every server"

    succeeded = sum(1 for r in results.values() if r.success)
    return f"Mirrored {content_hash[:12]} to {succeeded}/{len(results)} server(s):\n" + format_mirror_results(
        results.values()
    )


async def handle_check(cmd: CheckCommand, context: Optional[MediaContext] = None) -> str:
    if context is None:
        context = await get_context()
    content_hash = resolve_hash(context, cmd.hash_prefix)
    availability = await context.check(content_hash)
    return format_availability(content_hash, availability)


async def handle_refresh(cmd: RefreshCommand, context: Optional[MediaContext] = None) -> str:
    if context is None:
        context = await get_context()
    entry = await context.refresh(force=True)
    message = f"Refreshed: {len(entry.blobs)} blob(s) from {len(context.server_list.servers)} server(s)"
    if entry.partial:
        message += f", unreachable: {', '.join(entry.unreachable)}"
    if context.cache.last_error is not None:
        message += f"\nWarning: refresh failed, showing cached results: {context.cache.last_error}"
    return message


async def handle_whoami(
    cmd: WhoamiCommand, context: Optional[MediaContext] = None, config: Optional[Config] = None
) -> str:
    if config is None:
        config = get_config()
    if context is None:
        context = await get_context()

    lines = [
        f"Owner:   {context.owner}",
        f"Signer:  {context.signer.method}",
        f"Relays:  {', '.join(context.store.default_relays) or '(none)'}",
        f"Publish: {', '.join(context.store.publish_relays) or '(none)'}",
        f"Servers: {len(context.server_list.servers)}",
        f"Cache:   {context.cache.state.value}",
        f"Config:  {config.config_path}",
    ]
    failures = context.orchestrator.mirror_failures
    if failures:
        lines.append(f"Incomplete mirrors: {len(failures)} blob(s), use 'mirror <hash>' to retry")
    return "\n".join(lines)


async def handle_set_owner(cmd: SetOwnerCommand, config: Optional[Config] = None) -> str:
    """
    Handle 'set-owner' command.

    Saves the public key and drops the current context so the next command
    resolves the new owner's server list.
    """
    if config is None:
        config = get_config()
    config.set_owner(cmd.pubkey)
    await close_context()
    return f"Owner set to {cmd.pubkey}"


async def dispatch_command(cmd_obj: CommandRequest, context: Optional[MediaContext] = None) -> str:
    """
    Dispatch parsed command to appropriate handler.

    Orchestration and local errors are turned into messages; the REPL keeps
    running.
    """
    try:
        if isinstance(cmd_obj, ServersCommand):
            return await handle_servers(cmd_obj, context)
        elif isinstance(cmd_obj, AddServerCommand):
            return await handle_add_server(cmd_obj, context)
        elif isinstance(cmd_obj, RemoveServerCommand):
            return await handle_remove_server(cmd_obj, context)
        elif isinstance(cmd_obj, ReorderCommand):
            return await handle_reorder(cmd_obj, context)
        elif isinstance(cmd_obj, UploadCommand):
            return await handle_upload(cmd_obj, context)
        elif isinstance(cmd_obj, ListCommand):
            return await handle_list(cmd_obj, context)
        elif isinstance(cmd_obj, DeleteCommand):
            return await handle_delete(cmd_obj, context)
        elif isinstance(cmd_obj, MirrorCommand):
            return await handle_mirror(cmd_obj, context)
        elif isinstance(cmd_obj, CheckCommand):
            return await handle_check(cmd_obj, context)
        elif isinstance(cmd_obj, RefreshCommand):
            return await handle_refresh(cmd_obj, context)
        elif isinstance(cmd_obj, WhoamiCommand):
            return await handle_whoami(cmd_obj, context)
        elif isinstance(cmd_obj, SetOwnerCommand):
            return await handle_set_owner(cmd_obj)
        else:
            return f"Unknown command type: {type(cmd_obj)}"
    except (MediaFleetError, CommandError) as e:
        logger.debug(f"Command {cmd_obj.command} failed: {type(e).__name__}: {e}")
        return f"Error: {e}"
    except OSError as e:
        return f"Error: {e}"
