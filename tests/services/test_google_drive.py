#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
import pytest_asyncio
from freezegun import freeze_time

from dust_connectors.config import default_config
from dust_connectors.services.google_drive import GoogleDriveSyncService
from dust_connectors.services.orchestrator import WorkflowOrchestrator
from dust_connectors.sources.google_drive.manager import (
    GoogleDriveConnectorManager,
    full_sync_workflow_id,
    renew_webhooks_workflow_id,
)
from tests.fake_google_drive import FakeWorkflowIndex, add_connector

SYNCED = "2024-03-01T00:00:00+00:00"


@pytest_asyncio.fixture
async def service(ctx):
    config = default_config()
    orchestrator = WorkflowOrchestrator(config, workflow_index=FakeWorkflowIndex())
    service = GoogleDriveSyncService(config, ctx=ctx, orchestrator=orchestrator)
    service._setup()
    yield service
    await orchestrator.stop()


@freeze_time("2024-03-10 12:00:00")
@pytest.mark.parametrize(
    "fields, due",
    [
        ({}, False),
        ({"last_sync_success_time": SYNCED}, True),
        (
            {
                "last_sync_success_time": SYNCED,
                "last_gc_time": "2024-03-10T00:00:00+00:00",
            },
            False,
        ),
        (
            {
                "last_sync_success_time": SYNCED,
                "last_gc_time": "2024-03-08T00:00:00+00:00",
            },
            True,
        ),
    ],
)
@pytest.mark.asyncio
async def test_gc_due(service, fields, due):
    connector = await add_connector(service.ctx, **fields)

    assert service._gc_due(connector) is due


@pytest.mark.asyncio
async def test_schedule_garbage_collection(service):
    ctx = service.ctx
    await add_connector(ctx, "due", last_sync_success_time=SYNCED)
    await add_connector(ctx, "never-synced")
    await add_connector(ctx, "paused", status="paused", last_sync_success_time=SYNCED)
    await add_connector(ctx, "busy", last_sync_success_time=SYNCED)

    async def _syncing(run):
        await asyncio.sleep(10)

    await service.orchestrator.start(full_sync_workflow_id("busy"), _syncing)
    service.manager.launch_garbage_collector = AsyncMock()

    await service._schedule_garbage_collection()

    service.manager.launch_garbage_collector.assert_awaited_once_with("due")
    # every connector reported alive
    for connector_id in ("due", "never-synced", "paused", "busy"):
        connector = await ctx.get_connector(connector_id)
        assert connector.last_seen is not None


@pytest.mark.asyncio
async def test_schedule_garbage_collection_only_configured_connectors(ctx):
    config = default_config()
    config["connectors"] = ["kept"]
    service = GoogleDriveSyncService(config, ctx=ctx, orchestrator=Mock())
    service._setup()
    service.orchestrator.is_running.return_value = False
    service.manager.launch_garbage_collector = AsyncMock()
    await add_connector(ctx, "kept", last_sync_success_time=SYNCED)
    await add_connector(ctx, "other", last_sync_success_time=SYNCED)

    await service._schedule_garbage_collection()

    service.manager.launch_garbage_collector.assert_awaited_once_with("kept")


@pytest.mark.asyncio
async def test_schedule_garbage_collection_errors(service, patch_logger):
    service.ctx.connectors.all_connectors = Mock(side_effect=Exception("es down"))

    await service._schedule_garbage_collection()
    assert service.errors[0] == 1
    patch_logger.assert_present("es down")

    service.service_config["max_errors"] = 1
    with pytest.raises(Exception, match="es down"):
        await service._schedule_garbage_collection()


@pytest.mark.asyncio
async def test_run_resumes_and_starts_renewal(service):
    ctx = service.ctx
    resumed = [full_sync_workflow_id("connector-1")]

    with patch.object(
        GoogleDriveConnectorManager, "resume", AsyncMock(return_value=resumed)
    ) as resume:
        task = asyncio.create_task(service.run())
        for _ in range(10):
            await asyncio.sleep(0)

        assert service.running
        resume.assert_awaited_once()
        assert service.orchestrator.is_running(renew_webhooks_workflow_id())

        service.stop()
        await asyncio.wait_for(task, timeout=1)

    assert not service.running
    assert service.orchestrator.running_workflows == []
    assert ctx.connectors.closed
    assert ctx.webhooks.closed


@pytest.mark.asyncio
async def test_run_gives_up_when_elasticsearch_is_down(service):
    service.ctx.connectors.wait = AsyncMock(return_value=False)

    assert await service._run() == -1
    assert service.ctx.mirror.closed


def test_stop_before_run():
    service = GoogleDriveSyncService(default_config())
    service.stop()

    assert not service.running
