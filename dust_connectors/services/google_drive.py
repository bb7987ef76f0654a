#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Long running worker of the Google Drive connectors.

On start it resumes the full syncs left unfinished, then runs the webhook
renewal cron and periodically launches the garbage collector of connectors
which were not collected within `gc_interval`.
"""
from dust_connectors.protocol.connectors import Status
from dust_connectors.protocol.workflows import WorkflowIndex
from dust_connectors.services.base import BaseService
from dust_connectors.services.orchestrator import WorkflowOrchestrator
from dust_connectors.sources.google_drive.context import GoogleDriveContext
from dust_connectors.sources.google_drive.manager import (
    GoogleDriveConnectorManager,
    full_sync_workflow_id,
    garbage_collector_workflow_id,
)
from dust_connectors.utils import seconds, utc_now


class GoogleDriveSyncService(BaseService):
    name = "google_drive"

    def __init__(self, config, ctx=None, orchestrator=None):
        super().__init__(config)
        self.idling = self.service_config["idling"]
        self.heartbeat_interval = self.service_config["heartbeat_timeout"]
        self.gc_interval = seconds(self.config["google_drive"]["gc_interval"])
        self.ctx = ctx
        self.orchestrator = orchestrator
        self.workflow_index = None
        self.manager = None

    def _setup(self):
        if self.ctx is None:
            self.ctx = GoogleDriveContext(self.config)
        if self.orchestrator is None:
            self.workflow_index = WorkflowIndex(
                self.es_config, index_name=self.config["indices"]["workflows"]
            )
            self.orchestrator = WorkflowOrchestrator(
                self.config, workflow_index=self.workflow_index
            )
        self.manager = GoogleDriveConnectorManager(self.ctx, self.orchestrator)

    async def _run(self):
        self._setup()
        self.logger.debug("Successfully started Google Drive sync service...")
        try:
            if not await self.ctx.connectors.wait():
                self.logger.critical(f"{self.es_config['host']} seems down. Bye!")
                return -1
            await self.ctx.ensure_indices()
            if self.workflow_index is not None:
                await self.workflow_index.ensure_exists()

            resumed = await self.manager.resume()
            if resumed:
                self.logger.info(f"Resumed {len(resumed)} full syncs")
            await self.manager.launch_renew_webhooks()

            while self.running:
                await self._schedule_garbage_collection()
                await self._sleeps.sleep(self.idling)
        finally:
            await self.orchestrator.stop()
            await self.ctx.close()
            if self.workflow_index is not None:
                await self.workflow_index.close()
        return 0

    def stop(self):
        super().stop()
        if self.ctx is not None:
            self.ctx.connectors.stop_waiting()

    def _is_busy(self, connector_id):
        return self.orchestrator.is_running(
            full_sync_workflow_id(connector_id)
        ) or self.orchestrator.is_running(garbage_collector_workflow_id(connector_id))

    def _gc_due(self, connector):
        if connector.last_sync_success_time is None:
            # never synced, nothing to collect
            return False
        last_gc_time = connector.last_gc_time
        return last_gc_time is None or utc_now() - last_gc_time > self.gc_interval

    async def _schedule_garbage_collection(self):
        try:
            launched = 0
            async for connector in self.ctx.connectors.all_connectors(
                connector_ids=self.connector_ids
            ):
                await connector.heartbeat(self.heartbeat_interval)
                if connector.status == Status.PAUSED:
                    connector.log_debug("Connector is paused, skipping")
                    continue
                if not self._gc_due(connector) or self._is_busy(connector.id):
                    continue
                await self.manager.launch_garbage_collector(connector.id)
                launched += 1
            if launched:
                self.logger.info(f"Launched {launched} garbage collectors")
        except Exception as e:
            self.logger.critical(e, exc_info=True)
            self.raise_if_spurious(e)
