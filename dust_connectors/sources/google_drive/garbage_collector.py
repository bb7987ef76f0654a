#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Garbage collection of mirrored objects which were not seen by the last
generation.

An object is only removed after the remote source confirms it is gone,
trashed, or out of the watched folders. Anything else gets its
`last_seen_ts` refreshed, so every batch makes progress.
"""
from dust_connectors.exceptions import ExternalOauthTokenError
from dust_connectors.services.orchestrator import heartbeat
from dust_connectors.sources.google_drive.drives import get_folders_to_sync
from dust_connectors.sources.google_drive.files import delete_file
from dust_connectors.sources.google_drive.hierarchy import (
    ParentsCache,
    object_is_in_folders,
)
from dust_connectors.utils import run_bounded

DELETED = "deleted"
KEPT = "kept"


async def should_garbage_collect(ctx, connector_id):
    """True if one of the watched folders is not accessible anymore."""
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    for folder_id in await get_folders_to_sync(ctx, connector_id):
        if await client.get_object(folder_id) is None:
            return True
    return False


async def garbage_collect(ctx, connector_id, cutoff, parents_cache=None):
    """Reconciles one batch of objects not seen since `cutoff`.

    Returns:
        int: number of objects processed, 0 once there is nothing left to do
    """
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    log = ctx.logger_for(connector_id, "garbage_collect")
    if parents_cache is None:
        parents_cache = ParentsCache()

    stale = await ctx.mirror.stale_objects(
        connector_id, cutoff, limit=ctx.setting("gc_page_size")
    )
    if not stale:
        return 0
    folder_ids = await get_folders_to_sync(ctx, connector_id)

    async def _collect(mirrored):
        heartbeat()
        drive_file = await client.get_object(mirrored.drive_file_id)
        if drive_file is None:
            # gone from Google Drive
            await delete_file(ctx, mirrored, log)
            return DELETED
        in_scope = await object_is_in_folders(
            client, drive_file, folder_ids, parents_cache
        )
        if not in_scope or drive_file.trashed:
            await delete_file(ctx, mirrored, log)
            return DELETED
        await ctx.mirror.touch(connector_id, mirrored.drive_file_id)
        return KEPT

    results = await run_bounded(stale, _collect, ctx.setting("files_gc_concurrency"))

    processed = 0
    deleted = 0
    for mirrored, result in zip(stale, results):
        if isinstance(result, ExternalOauthTokenError):
            raise result
        if isinstance(result, BaseException):
            log.error(f"Failed to garbage collect {mirrored.drive_file_id}: {result!r}")
            continue
        processed += 1
        if result == DELETED:
            deleted += 1
    log.info(f"Processed {processed} of {len(stale)} stale objects, deleted {deleted}")
    return processed


async def garbage_collector_finished(ctx, connector_id):
    connector = await ctx.get_connector(connector_id)
    await connector.gc_finished()


async def get_last_gc_time(ctx, connector_id):
    """Last time the garbage collector went through, None if it never did."""
    connector = await ctx.get_connector(connector_id)
    return connector.last_gc_time
