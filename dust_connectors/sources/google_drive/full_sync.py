#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Full sync: walks the watched folders one page of children at a time.

Each call processes a single (folder, page token) pair and hands back the
subfolders it discovered, the caller owns the frontier.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from dust_connectors.exceptions import ExternalOauthTokenError
from dust_connectors.services.orchestrator import heartbeat
from dust_connectors.sources.google_drive.files import (
    delete_one_file,
    sync_one_file,
    upsert_folder,
)
from dust_connectors.sources.google_drive.hierarchy import ParentsCache
from dust_connectors.utils import run_bounded


@dataclass
class FullSyncResult:
    next_page_token: Optional[str] = None
    count: int = 0
    subfolders: List[str] = field(default_factory=list)


async def mark_folder_as_visited(ctx, connector_id, folder_id, generation, folder=None):
    """Records that every page of `folder_id` was processed in `generation`.

    `folder` is the already fetched remote folder, fetched here otherwise.

    Returns:
        bool: False if the folder does not exist anymore
    """
    if folder is None:
        connector = await ctx.get_connector(connector_id)
        folder = await ctx.client_for(connector).get_object(folder_id)
    if folder is None:
        log = ctx.logger_for(connector_id, "mark_folder_as_visited")
        log.info(f"Google Drive folder {folder_id} unexpectedly not found (got 404)")
        return False
    await upsert_folder(ctx, connector_id, folder, visited_generation=generation.id)
    return True


async def full_sync(
    ctx, connector_id, folder_id, generation, page_token=None, parents_cache=None
):
    """Syncs one page of the immediate children of `folder_id`.

    Args:
        generation (Generation): the generation the walk belongs to
        page_token (str): cursor within the folder, None for its first page
        parents_cache (ParentsCache): ancestors cache of the generation
    Returns:
        FullSyncResult: next page token (None once the folder is done), the
        number of files pushed downstream and the discovered subfolders
    """
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    log = ctx.logger_for(connector_id, "full_sync", folder_id=folder_id)
    if parents_cache is None:
        parents_cache = ParentsCache(generation.id)

    if page_token is None and await ctx.mirror.visited_in_generation(
        connector_id, folder_id, generation.id
    ):
        log.debug(f"Folder already visited in generation {generation.id}")
        return FullSyncResult()

    folder = await client.get_object(folder_id)
    if folder is None:
        log.info("Google Drive folder unexpectedly not found (got 404)")
        return FullSyncResult()

    files, next_page_token = await client.list_children_page(
        folder.id,
        ctx.mime_types_for(connector),
        page_token=page_token,
        page_size=ctx.setting("children_page_size"),
    )
    subfolders = [file.id for file in files if file.is_folder]

    async def _sync(file):
        heartbeat()
        if file.trashed:
            await delete_one_file(ctx, connector_id, file.id, log)
            return False
        return await sync_one_file(
            ctx, connector, client, file, parents_cache, log, is_batch_sync=True
        )

    results = await run_bounded(files, _sync, ctx.setting("files_sync_concurrency"))
    count = 0
    for file, result in zip(files, results):
        if isinstance(result, ExternalOauthTokenError):
            raise result
        if isinstance(result, BaseException):
            log.error(f"Failed to sync file {file.id}: {result!r}")
        elif result:
            count += 1

    if next_page_token is None:
        await mark_folder_as_visited(
            ctx, connector_id, folder_id, generation, folder=folder
        )

    log.info(
        f"Synced {count} of {len(files)} children, {len(subfolders)} subfolders"
    )
    return FullSyncResult(
        next_page_token=next_page_token, count=count, subfolders=subfolders
    )
