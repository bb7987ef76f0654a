#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Incremental sync: applies the change feed of a drive, one page at a time.

The cursor of the feed is persisted after every page, so the feed is never
replayed from an older position unless a full resync resets it.
"""
from dust_connectors.exceptions import (
    ExternalOauthTokenError,
    InvalidRemoteObjectError,
    RemoteApiError,
    TransientRemoteError,
)
from dust_connectors.services.orchestrator import heartbeat
from dust_connectors.sources.google_drive.drives import (
    get_drives,
    get_folders_to_sync,
)
from dust_connectors.sources.google_drive.files import (
    delete_one_file,
    sync_one_file,
    upsert_folder,
)
from dust_connectors.sources.google_drive.hierarchy import (
    ParentsCache,
    object_is_in_folders,
)

LOST_ACCESS_STATUS = 403


async def get_sync_page_token(ctx, connector_id, drive_id, is_shared_drive):
    """Persisted cursor of the drive, or a fresh one starting now."""
    sync_token = await ctx.sync_tokens.get(connector_id, drive_id)
    if sync_token:
        return sync_token
    connector = await ctx.get_connector(connector_id)
    return await ctx.client_for(connector).get_start_page_token(
        drive_id, is_shared_drive
    )


async def populate_sync_tokens(ctx, connector_id, drives=None):
    """Moves the cursor of every drive to the current head of its change feed.

    Only done when a full sync starts: whatever changed before is covered
    by the full walk.
    """
    connector = await ctx.get_connector(connector_id)
    client = ctx.client_for(connector)
    if drives is None:
        drives = await get_drives(ctx, connector_id)
    for drive in drives:
        sync_token = await client.get_start_page_token(drive.id, drive.is_shared_drive)
        await ctx.sync_tokens.upsert(connector_id, drive.id, sync_token)
    return len(drives)


async def _apply_change(
    ctx, connector, client, change, mime_types, folder_ids, parents_cache, log
):
    if change.get("changeType") != "file" or not change.get("file"):
        return
    raw = change["file"]
    if not raw.get("mimeType") or raw["mimeType"] not in mime_types:
        return
    if not raw.get("id"):
        return

    file = await client.to_drive_object(raw)
    in_scope = await object_is_in_folders(client, file, folder_ids, parents_cache)
    if not in_scope or file.trashed:
        # out of the watched folders now, drop our copy if we have one
        if await delete_one_file(ctx, connector.id, file.id, log):
            log.info(f"Removed file {file.id} (trashed or moved out of scope)")
        return

    if not raw.get("createdTime") or not raw.get("name"):
        msg = f"Invalid file. File is: {raw}"
        raise InvalidRemoteObjectError(msg)

    log.info(f"Will sync file {file.id}")
    if file.is_folder:
        await upsert_folder(ctx, connector.id, file)
    else:
        await sync_one_file(ctx, connector, client, file, parents_cache, log)
    log.info(f"Done syncing file {file.id}")


async def incremental_sync(
    ctx,
    connector_id,
    drive_id,
    is_shared_drive,
    generation,
    page_token=None,
    parents_cache=None,
):
    """Applies one page of the change feed of `drive_id`.

    Args:
        generation (Generation): the generation the run belongs to
        page_token (str): cursor to resume from, defaults to the persisted one
        parents_cache (ParentsCache): ancestors cache of the generation
    Returns:
        str: the cursor of the next page, None once the feed is drained or
        when the drive is not accessible anymore
    """
    log = ctx.logger_for(connector_id, "incremental_sync", drive_id=drive_id)
    if parents_cache is None:
        parents_cache = ParentsCache(generation.id)
    try:
        connector = await ctx.get_connector(connector_id)
        client = ctx.client_for(connector)
        if not page_token:
            page_token = await get_sync_page_token(
                ctx, connector_id, drive_id, is_shared_drive
            )
        mime_types = ctx.mime_types_for(connector)
        folder_ids = await get_folders_to_sync(ctx, connector_id)

        page = await client.list_changes_page(
            page_token,
            drive_id,
            is_shared_drive,
            page_size=ctx.setting("changes_page_size"),
        )
        log.info(f"Got {len(page.changes)} changes")

        for change in page.changes:
            heartbeat()
            try:
                await _apply_change(
                    ctx,
                    connector,
                    client,
                    change,
                    mime_types,
                    folder_ids,
                    parents_cache,
                    log,
                )
            except (ExternalOauthTokenError, InvalidRemoteObjectError):
                raise
            except Exception as e:
                file_id = (change.get("file") or {}).get("id") or change.get("fileId")
                log.error(f"Failed to sync file {file_id}: {e!r}")

        new_cursor = page.next_page_token or page.new_start_page_token
        if new_cursor:
            await ctx.sync_tokens.upsert(connector_id, drive_id, new_cursor)
        return page.next_page_token
    except RemoteApiError as e:
        # 403 is also how the API reports rate limits
        if isinstance(e, TransientRemoteError):
            raise
        if e.status_code == LOST_ACCESS_STATUS:
            log.error(f"Looks like we lost access to this drive. Skipping: {e}")
            return None
        raise
