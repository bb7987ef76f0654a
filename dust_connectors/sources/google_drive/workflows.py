#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Google Drive workflows.

Every workflow takes the `WorkflowRun` it belongs to, the
`GoogleDriveConnectorManager` and the connector id. Remote and persistence
calls only happen inside activities, workflows own the control flow.
"""
from collections import deque

from dust_connectors.exceptions import ExternalOauthTokenError
from dust_connectors.logger import logger
from dust_connectors.protocol.connectors import SyncErrorType
from dust_connectors.sources.google_drive.context import Generation
from dust_connectors.sources.google_drive.drives import (
    get_drives_to_sync,
    get_folders_to_sync,
)
from dust_connectors.sources.google_drive.full_sync import full_sync
from dust_connectors.sources.google_drive.garbage_collector import (
    garbage_collect,
    garbage_collector_finished,
    should_garbage_collect,
)
from dust_connectors.sources.google_drive.hierarchy import ParentsCache
from dust_connectors.sources.google_drive.incremental_sync import (
    incremental_sync,
    populate_sync_tokens,
)
from dust_connectors.sources.google_drive.webhooks import (
    ensure_webhook_for_drive,
    purge_expired_webhooks,
    renew_expiring_webhooks,
)
from dust_connectors.utils import to_datetime

FULL_SYNC = "google_drive_full_sync"
INCREMENTAL_SYNC = "google_drive_incremental_sync"
GARBAGE_COLLECTOR = "google_drive_garbage_collector"
RENEW_WEBHOOKS = "google_drive_renew_webhooks"


async def sync_started(ctx, connector_id):
    connector = await ctx.get_connector(connector_id)
    await connector.sync_started()


async def sync_succeeded(ctx, connector_id):
    connector = await ctx.get_connector(connector_id)
    await connector.sync_succeeded()


async def sync_failed(ctx, connector_id, error_type):
    connector = await ctx.get_connector(connector_id)
    await connector.sync_failed(error_type)


async def ensure_webhooks_for_drives(ctx, connector_id, drives):
    connector = await ctx.get_connector(connector_id)
    margin = ctx.duration("webhook_renew_margin")
    created = []
    for drive in drives:
        webhook_id = await ensure_webhook_for_drive(
            ctx, connector, drive.id, margin, is_shared_drive=drive.is_shared_drive
        )
        if webhook_id is not None:
            created.append(webhook_id)
    return created


async def _report_failure(wf, ctx, connector_id, exception):
    if isinstance(exception, ExternalOauthTokenError):
        error_type = SyncErrorType.OAUTH_TOKEN_REVOKED
    else:
        error_type = SyncErrorType.THIRD_PARTY_INTERNAL_ERROR
    await wf.execute_activity(sync_failed, ctx, connector_id, error_type)


def _full_sync_state(generation, frontier, count):
    return {
        "generation": generation.to_dict(),
        "frontier": [[folder_id, page_token] for folder_id, page_token in frontier],
        "count": count,
    }


async def google_drive_full_sync(wf, manager, connector_id):
    """Walks every watched folder, then launches the garbage collector.

    The walk is a worklist of (folder id, page token) pairs, persisted after
    every page so an interrupted run resumes where it stopped.
    """
    ctx = manager.ctx
    try:
        if wf.resumed_state:
            state = wf.resumed_state
            generation = Generation.from_dict(state["generation"])
            frontier = deque(tuple(item) for item in state["frontier"])
            count = state.get("count", 0)
        else:
            generation = Generation()
            await wf.execute_activity(sync_started, ctx, connector_id)
            drives = await wf.execute_activity(get_drives_to_sync, ctx, connector_id)
            await wf.execute_activity(populate_sync_tokens, ctx, connector_id, drives)
            await wf.execute_activity(
                ensure_webhooks_for_drives, ctx, connector_id, drives
            )
            folder_ids = await wf.execute_activity(
                get_folders_to_sync, ctx, connector_id
            )
            frontier = deque((folder_id, None) for folder_id in folder_ids)
            count = 0

        parents_cache = ParentsCache(generation.id)
        while frontier:
            folder_id, page_token = frontier.popleft()
            result = await wf.execute_activity(
                full_sync,
                ctx,
                connector_id,
                folder_id,
                generation,
                page_token,
                parents_cache,
            )
            count += result.count
            if result.next_page_token:
                frontier.appendleft((folder_id, result.next_page_token))
            frontier.extend((subfolder, None) for subfolder in result.subfolders)
            await wf.checkpoint(_full_sync_state(generation, frontier, count))

        await wf.execute_activity(sync_succeeded, ctx, connector_id)
    except ExternalOauthTokenError as e:
        await _report_failure(wf, ctx, connector_id, e)
        return None
    except Exception as e:
        await _report_failure(wf, ctx, connector_id, e)
        raise

    logger.info(
        f"Full sync of connector {connector_id} done, {count} files synced in generation {generation.id}"
    )
    await manager.launch_garbage_collector(connector_id, cutoff=generation.started_at)
    return count


async def google_drive_incremental_sync(wf, manager, connector_id):
    """Applies the change feed of every synced drive.

    Triggers are debounced: signals received while the feeds are processed
    cause one more pass, not one pass each.
    """
    ctx = manager.ctx
    passes = 0
    try:
        while wf.pending_signals:
            await wf.sleep(ctx.setting("incremental_sync_debounce"))
            wf.consume_signals()
            generation = Generation()
            parents_cache = ParentsCache(generation.id)

            drives = await wf.execute_activity(get_drives_to_sync, ctx, connector_id)
            for drive in drives:
                page_token = None
                while True:
                    page_token = await wf.execute_activity(
                        incremental_sync,
                        ctx,
                        connector_id,
                        drive.id,
                        drive.is_shared_drive,
                        generation,
                        page_token,
                        parents_cache,
                    )
                    if page_token is None:
                        break
            await wf.execute_activity(sync_succeeded, ctx, connector_id)
            passes += 1

            if await wf.execute_activity(should_garbage_collect, ctx, connector_id):
                logger.info(
                    f"A watched folder of connector {connector_id} is gone, launching a full sync"
                )
                await manager.launch_full_sync(connector_id)
                break
    except ExternalOauthTokenError as e:
        await _report_failure(wf, ctx, connector_id, e)
        return None
    except Exception as e:
        await _report_failure(wf, ctx, connector_id, e)
        raise
    return passes


async def google_drive_garbage_collector(wf, manager, connector_id, cutoff):
    """Collects objects not seen since `cutoff` until a batch has nothing to do."""
    ctx = manager.ctx
    cutoff = to_datetime(cutoff)
    parents_cache = ParentsCache()
    total = 0
    try:
        while True:
            processed = await wf.execute_activity(
                garbage_collect, ctx, connector_id, cutoff, parents_cache
            )
            if processed == 0:
                break
            total += processed
        await wf.execute_activity(garbage_collector_finished, ctx, connector_id)
    except ExternalOauthTokenError as e:
        await _report_failure(wf, ctx, connector_id, e)
        return None
    return total


async def google_drive_renew_webhooks(wf, manager):
    """Renews subscriptions in batches until a short batch, then purges."""
    ctx = manager.ctx
    batch_size = ctx.setting("webhook_renew_batch_size")
    total = 0
    while True:
        processed = await wf.execute_activity(
            renew_expiring_webhooks, ctx, batch_size
        )
        total += processed
        if processed < batch_size:
            break
    purged = await wf.execute_activity(purge_expired_webhooks, ctx, batch_size)
    logger.info(f"Renewed {total} webhooks, purged {purged}")
    return total
