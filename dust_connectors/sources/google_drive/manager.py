#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Launchers of the Google Drive workflows.
"""
from dust_connectors.exceptions import PartialResyncNotSupportedError
from dust_connectors.sources.google_drive.webhooks import (
    handle_notification,
    stop_webhooks,
)
from dust_connectors.sources.google_drive.workflows import (
    FULL_SYNC,
    GARBAGE_COLLECTOR,
    INCREMENTAL_SYNC,
    RENEW_WEBHOOKS,
    google_drive_full_sync,
    google_drive_garbage_collector,
    google_drive_incremental_sync,
    google_drive_renew_webhooks,
)
from dust_connectors.utils import iso_utc, seconds, utc_now


def full_sync_workflow_id(connector_id):
    return f"google-drive-full-sync-{connector_id}"


def incremental_sync_workflow_id(connector_id):
    return f"google-drive-incremental-sync-{connector_id}"


def garbage_collector_workflow_id(connector_id):
    return f"google-drive-garbage-collector-{connector_id}"


def renew_webhooks_workflow_id():
    return "google-drive-renew-webhooks"


class GoogleDriveConnectorManager:
    """Starts, signals and stops the workflows of Google Drive connectors.

    Args:
        ctx (GoogleDriveContext): dependencies of the activities
        orchestrator (WorkflowOrchestrator): where workflows run
    """

    def __init__(self, ctx, orchestrator):
        self.ctx = ctx
        self.orchestrator = orchestrator

    async def launch_full_sync(self, connector_id, from_ts=None):
        """Restarts the full sync of a connector from scratch.

        Raises:
            PartialResyncNotSupportedError: if `from_ts` is given
        """
        if from_ts is not None:
            msg = "Google Drive connector does not support partial resync"
            raise PartialResyncNotSupportedError(msg)
        workflow_id = full_sync_workflow_id(connector_id)
        await self.orchestrator.start(
            workflow_id,
            google_drive_full_sync,
            self,
            connector_id,
            workflow_type=FULL_SYNC,
            connector_id=connector_id,
        )
        return workflow_id

    async def launch_incremental_sync(self, connector_id):
        """Triggers an incremental sync, coalesced with the running one if any."""
        workflow_id = incremental_sync_workflow_id(connector_id)
        await self.orchestrator.signal_with_start(
            workflow_id,
            google_drive_incremental_sync,
            self,
            connector_id,
            workflow_type=INCREMENTAL_SYNC,
            connector_id=connector_id,
        )
        return workflow_id

    async def launch_garbage_collector(self, connector_id, cutoff=None):
        """Collects the objects of `connector_id` not seen since `cutoff`.

        Defaults to everything not seen within the last `gc_interval`.
        """
        if cutoff is None:
            cutoff = utc_now() - seconds(self.ctx.setting("gc_interval"))
        workflow_id = garbage_collector_workflow_id(connector_id)
        await self.orchestrator.start(
            workflow_id,
            google_drive_garbage_collector,
            self,
            connector_id,
            iso_utc(cutoff),
            workflow_type=GARBAGE_COLLECTOR,
            connector_id=connector_id,
        )
        return workflow_id

    async def launch_renew_webhooks(self):
        workflow_id = renew_webhooks_workflow_id()
        await self.orchestrator.start_cron(
            workflow_id,
            google_drive_renew_webhooks,
            self.ctx.setting("webhook_renew_interval"),
            self,
            workflow_type=RENEW_WEBHOOKS,
        )
        return workflow_id

    async def stop(self, connector_id, stop_channels=False):
        """Terminates every workflow of a connector.

        With `stop_channels`, its push channels are closed too so no more
        incremental syncs get triggered.
        """
        stopped = []
        for workflow_id in (
            full_sync_workflow_id(connector_id),
            incremental_sync_workflow_id(connector_id),
            garbage_collector_workflow_id(connector_id),
        ):
            if await self.orchestrator.terminate(workflow_id):
                stopped.append(workflow_id)
        if stop_channels:
            await stop_webhooks(self.ctx, connector_id)
        return stopped

    async def resume(self):
        """Resumes the full syncs a previous worker left unfinished."""
        return await self.orchestrator.resume(
            FULL_SYNC, google_drive_full_sync, self
        )

    async def handle_notification(self, webhook_id):
        return await handle_notification(
            self.ctx, webhook_id, self.launch_incremental_sync
        )
